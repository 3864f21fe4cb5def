"""Root CA and host certificate pipelines."""

from pathlib import Path

from .cert_utils import format_serial
from .config import (
    DEFAULT_CA_CONFIG,
    DEFAULT_HOST_CONFIG,
    DEFAULT_KEY_SIZE,
    SIGNING_EXTENSIONS,
    SIGNING_POLICY,
    CAPaths,
    HostPaths,
    HostPipelineOptions,
    PipelineOptions,
)
from .config_merge import MergeOutcome, merge_config_sources
from .errors import CAPreconditionError, GenerationError, ToolkitError
from .ledger import SigningLedger
from .logging_config import LOGGER
from .models import HostCertResult, HostState, RootCAResult, RootCAState
from .san import HostSpec, apply_host_identity
from .stages import ArtifactKind, CertificateArtifact, StageResolver
from .toolkit import PKIToolkit


def _prepare_output_dir(path: Path) -> Path:
    LOGGER.debug("Creating & resolving output directory")
    path.mkdir(parents=True, exist_ok=True)
    return path.resolve()


def _read_key_size(toolkit: PKIToolkit, config_path: Path) -> int:
    try:
        return toolkit.key_size(config_path, DEFAULT_KEY_SIZE)
    except ToolkitError as e:
        raise GenerationError(ArtifactKind.MERGED_CONFIG.value, config_path, str(e)) from e


def _summarize(toolkit: PKIToolkit, cert_path: Path) -> str:
    try:
        summary = toolkit.describe_certificate(cert_path)
    except ToolkitError as e:
        raise GenerationError(ArtifactKind.CERTIFICATE.value, cert_path, str(e)) from e
    LOGGER.info("Info:\n%s", summary)
    return summary


class RootCAPipeline:
    """Produces a self-signed certificate authority in one output directory.

    Stages: config -> bookkeeping (ledger, serial counter) -> key -> certificate.
    """

    def __init__(self, options: PipelineOptions, toolkit: PKIToolkit | None = None) -> None:
        self.options = options
        self.toolkit = toolkit or PKIToolkit()
        self.state = RootCAState.INIT

    def _advance(self, state: RootCAState) -> None:
        LOGGER.debug("Root CA pipeline: %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self) -> RootCAResult:
        """Run every stage, reusing whatever already exists on disk.

        Returns:
            RootCAResult with artifact paths and the certificate summary

        Raises:
            ConfigSourceMissingError: If a config source does not exist
            MergeUtilityError: If a config source is malformed
            GenerationError: If key or certificate generation fails
        """
        paths = CAPaths(_prepare_output_dir(self.options.output_dir))
        force = self.options.force
        resolver = StageResolver()

        config = CertificateArtifact(ArtifactKind.MERGED_CONFIG, paths.config, force)
        key = CertificateArtifact(ArtifactKind.PRIVATE_KEY, paths.key, force)
        cert = CertificateArtifact(ArtifactKind.CERTIFICATE, paths.certificate, force)
        # The ledger and serial counter are not artifacts: they survive force
        resolver.purge([config, key, cert])

        outcome = merge_config_sources(self.options.config_sources, paths.config, DEFAULT_CA_CONFIG)
        if outcome is MergeOutcome.MERGED:
            resolver.generated.append(paths.config)
        self._advance(RootCAState.CONFIG_READY)

        ledger = SigningLedger(paths.index, paths.index_attr, paths.serial)
        ledger.ensure()
        self._advance(RootCAState.BOOKKEEPING_READY)

        key_size = _read_key_size(self.toolkit, paths.config)
        resolver.resolve(key, lambda out: self.toolkit.generate_key(out, key_size))
        self._advance(RootCAState.KEY_READY)

        resolver.resolve(cert, lambda out: self.toolkit.self_sign(paths.config, paths.key, out))
        self._advance(RootCAState.CERT_READY)

        summary = _summarize(self.toolkit, paths.certificate)
        self._advance(RootCAState.DONE)
        LOGGER.info("Done")
        LOGGER.info("You will have to import '%s' into your OS/browser", paths.certificate)
        LOGGER.info(
            "Keep in mind that once you do this, any certificate signed by you will blindly be trusted"
        )
        LOGGER.info("Keep these files secure!")

        return RootCAResult(
            config_path=paths.config,
            key_path=paths.key,
            cert_path=paths.certificate,
            serial_path=paths.serial,
            index_path=paths.index,
            generated=resolver.generated,
            summary=summary,
        )


def check_ca_ready(ca_dir: Path) -> CAPaths:
    """Verify the CA directory holds a config, key and certificate.

    Raises:
        CAPreconditionError: If any of them is missing
    """
    paths = CAPaths(ca_dir)
    missing = [p for p in (paths.config, paths.key, paths.certificate) if not p.is_file()]
    if missing:
        raise CAPreconditionError(ca_dir, missing)
    return CAPaths(ca_dir.resolve())


class HostCertificatePipeline:
    """Produces a CA-signed certificate for one primary host plus alternative names.

    Stages: config (with derived common name and SANs) -> key -> request ->
    signing. An existing certificate short-circuits the whole pipeline.
    """

    def __init__(self, options: HostPipelineOptions, toolkit: PKIToolkit | None = None) -> None:
        self.options = options
        self.spec = HostSpec.of(options.hosts)
        self.toolkit = toolkit or PKIToolkit()
        self.state = HostState.INIT

    def _advance(self, state: HostState) -> None:
        LOGGER.debug("Host pipeline: %s -> %s", self.state.value, state.value)
        self.state = state

    def run(self) -> HostCertResult:
        """Run every stage against the CA in ``options.ca_dir``.

        Returns:
            HostCertResult with artifact paths and the certificate summary

        Raises:
            CAPreconditionError: If the CA has not been generated yet
            ConfigSourceMissingError: If a config source does not exist
            MergeUtilityError: If a config source is malformed
            SectionResolutionError: If a section-name key is empty
            GenerationError: If key, request or certificate generation fails
        """
        # Before any side effect: nothing is created for a missing CA
        ca_paths = check_ca_ready(self.options.ca_dir)

        paths = HostPaths(_prepare_output_dir(self.options.output_dir))
        force = self.options.force
        resolver = StageResolver()

        config = CertificateArtifact(ArtifactKind.MERGED_CONFIG, paths.config, force)
        key = CertificateArtifact(ArtifactKind.PRIVATE_KEY, paths.key, force)
        request = CertificateArtifact(ArtifactKind.SIGNING_REQUEST, paths.request, force)
        cert = CertificateArtifact(ArtifactKind.CERTIFICATE, paths.certificate, force)
        resolver.purge([config, key, request, cert])

        if cert.exists:
            LOGGER.info("Using existing certificate '%s'", paths.certificate)
            return self._finish(paths, resolver, serial_number=None)

        self._merge_config(paths, resolver)
        self._advance(HostState.CONFIG_READY)

        key_size = _read_key_size(self.toolkit, paths.config)
        resolver.resolve(key, lambda out: self.toolkit.generate_key(out, key_size))
        self._advance(HostState.KEY_READY)

        resolver.resolve(
            request, lambda out: self.toolkit.create_request(paths.config, paths.key, out)
        )
        self._advance(HostState.REQUEST_READY)

        self._advance(HostState.SIGNING_PENDING)
        LOGGER.info("Signing certificate")
        try:
            issued = self.toolkit.sign_request(
                ca_paths.root,
                paths.request,
                paths.certificate,
                policy=SIGNING_POLICY,
                extensions=SIGNING_EXTENSIONS,
            )
        except ToolkitError as e:
            raise GenerationError(ArtifactKind.CERTIFICATE.value, paths.certificate, str(e)) from e
        resolver.generated.append(paths.certificate)

        return self._finish(paths, resolver, serial_number=format_serial(issued.serial_number))

    def _merge_config(self, paths: HostPaths, resolver: StageResolver) -> None:
        outcome = merge_config_sources(
            self.options.config_sources,
            paths.config,
            DEFAULT_HOST_CONFIG,
            derive=lambda document: apply_host_identity(document, self.spec),
        )
        if outcome is MergeOutcome.REUSED:
            LOGGER.info("Keeping host identity from existing config, ignoring passed hosts")
            return

        resolver.generated.append(paths.config)

    def _finish(
        self, paths: HostPaths, resolver: StageResolver, serial_number: str | None
    ) -> HostCertResult:
        summary = _summarize(self.toolkit, paths.certificate)
        self._advance(HostState.DONE)
        LOGGER.info("Done")
        return HostCertResult(
            config_path=paths.config,
            key_path=paths.key,
            csr_path=paths.request,
            cert_path=paths.certificate,
            generated=resolver.generated,
            summary=summary,
            serial_number=serial_number,
        )
