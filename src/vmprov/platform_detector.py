"""Cloud platform detection via the instance metadata service.

Philosophy:
- Single responsibility: classify the host as aws, azure or unknown
- Never fails outward: every probe error degrades to unknown
- Probes are strategy objects in an ordered list, so callers can reorder
  or extend providers without touching the detection loop

Public API (the "studs"):
    PlatformIdentity: Detection result enum
    AzureMatch: What counts as a positive Azure answer
    DetectorConfig: Timeouts, host override and probe policy
    PlatformProbe: Base class for provider probes
    AwsProbe: IMDSv2 with IMDSv1 fallback
    AzureProbe: Azure IMDS instance endpoint
    PlatformDetector: Runs the probes in order
    detect_platform: One-shot convenience wrapper
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum

import requests

from vmprov.imds_client import (
    DEFAULT_IMDS_HOST,
    ImdsClient,
    MalformedResponse,
    NetworkUnreachable,
    ProbeError,
    ProbeHTTPError,
    ProbeTimeout,
    Unauthenticated,
)

logger = logging.getLogger(__name__)


class PlatformIdentity(Enum):
    """Cloud platforms the detector can report."""

    AWS = "aws"
    AZURE = "azure"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


class AzureMatch(Enum):
    """Policy for accepting an Azure IMDS answer.

    SUBSTRING requires "azure" (any case) in the body; STATUS accepts any 2xx,
    relying on the endpoint only being reachable inside Azure's network.
    """

    SUBSTRING = "substring"
    STATUS = "status"


AWS_TOKEN_PATH = "/latest/api/token"
AWS_METADATA_PATH = "/latest/meta-data/"
AWS_IDENTITY_DOCUMENT_PATH = "/latest/dynamic/instance-identity/document"
AWS_TOKEN_TTL_HEADER = "X-aws-ec2-metadata-token-ttl-seconds"
AWS_TOKEN_HEADER = "X-aws-ec2-metadata-token"

AZURE_INSTANCE_PATH = "/metadata/instance"
AZURE_API_VERSION = "2021-02-01"

DEFAULT_PROBE_ORDER = (PlatformIdentity.AWS, PlatformIdentity.AZURE)


@dataclass(frozen=True)
class DetectorConfig:
    """Configuration for platform detection.

    String values are accepted for probe_order and azure_match and normalized
    to their enums.
    """

    connect_timeout_ms: int = 2000
    imds_host: str = DEFAULT_IMDS_HOST
    probe_order: tuple[PlatformIdentity, ...] = field(default=DEFAULT_PROBE_ORDER)
    azure_match: AzureMatch = AzureMatch.SUBSTRING
    aws_metadata_path: str = AWS_METADATA_PATH
    aws_token_ttl_seconds: int = 60
    azure_api_version: str = AZURE_API_VERSION

    def __post_init__(self) -> None:
        if self.connect_timeout_ms <= 0:
            raise ValueError(f"connect_timeout_ms must be positive, got {self.connect_timeout_ms}")
        if not self.imds_host:
            raise ValueError("imds_host must not be empty")
        if self.aws_token_ttl_seconds <= 0:
            raise ValueError("aws_token_ttl_seconds must be positive")

        order = tuple(PlatformIdentity(p) for p in self.probe_order)
        if not order:
            raise ValueError("probe_order must name at least one platform")
        if PlatformIdentity.UNKNOWN in order:
            raise ValueError("probe_order cannot contain 'unknown'")
        if len(set(order)) != len(order):
            raise ValueError(f"probe_order has duplicates: {[p.value for p in order]}")

        object.__setattr__(self, "probe_order", order)
        object.__setattr__(self, "azure_match", AzureMatch(self.azure_match))

    @property
    def timeout_seconds(self) -> float:
        """Per-probe timeout in seconds."""
        return self.connect_timeout_ms / 1000.0


class PlatformProbe:
    """Base class for a single provider probe.

    probe() returns the matched platform, None when the endpoint answered but
    did not look like this provider, and raises ProbeError on failure.
    """

    platform: PlatformIdentity = PlatformIdentity.UNKNOWN

    @property
    def name(self) -> str:
        return self.platform.value

    def probe(self, client: ImdsClient) -> PlatformIdentity | None:
        raise NotImplementedError


class AwsProbe(PlatformProbe):
    """AWS EC2 metadata probe.

    Tries IMDSv2 first (PUT for a session token, then an authenticated GET)
    and falls back to an unauthenticated IMDSv1 GET on the same path.
    """

    platform = PlatformIdentity.AWS

    def __init__(self, metadata_path: str = AWS_METADATA_PATH, token_ttl_seconds: int = 60):
        self.metadata_path = metadata_path
        self.token_ttl_seconds = token_ttl_seconds

    def probe(self, client: ImdsClient) -> PlatformIdentity | None:
        token = self._fetch_token(client)

        if token:
            try:
                response = client.get(self.metadata_path, headers={AWS_TOKEN_HEADER: token})
                self._verify(response)
                return self.platform
            except ProbeError as e:
                logger.debug(f"aws: IMDSv2 metadata request failed: {e}")

        # IMDSv1 fallback; errors propagate to the detector
        response = client.get(self.metadata_path)
        self._verify(response)
        return self.platform

    def _fetch_token(self, client: ImdsClient) -> str | None:
        try:
            response = client.put(
                AWS_TOKEN_PATH,
                headers={AWS_TOKEN_TTL_HEADER: str(self.token_ttl_seconds)},
            )
        except ProbeError as e:
            logger.debug(f"aws: IMDSv2 token request failed: {e}")
            return None

        token = response.text.strip()
        if not token:
            logger.debug("aws: IMDSv2 token response was empty")
            return None
        return token

    def _verify(self, response: requests.Response) -> None:
        """Check the metadata answer carries something AWS-shaped.

        Raises:
            MalformedResponse: Empty body, or a JSON identity document
                without instanceId and region
        """
        body = response.text.strip()
        if not body:
            raise MalformedResponse("aws: empty metadata response")

        if not body.startswith("{"):
            # /latest/meta-data/ answers with a plain-text key listing
            return

        try:
            document = json.loads(body)
        except ValueError as e:
            raise MalformedResponse(f"aws: invalid identity document: {e}") from e

        if not isinstance(document, dict):
            raise MalformedResponse("aws: identity document is not an object")

        missing = [key for key in ("instanceId", "region") if not document.get(key)]
        if missing:
            raise MalformedResponse(f"aws: identity document missing {', '.join(missing)}")

        logger.debug(f"aws: instance {document['instanceId']} in {document['region']}")


class AzureProbe(PlatformProbe):
    """Azure instance metadata probe."""

    platform = PlatformIdentity.AZURE

    def __init__(
        self,
        match: AzureMatch = AzureMatch.SUBSTRING,
        api_version: str = AZURE_API_VERSION,
    ):
        self.match = AzureMatch(match)
        self.api_version = api_version

    @property
    def path(self) -> str:
        return f"{AZURE_INSTANCE_PATH}?api-version={self.api_version}"

    def probe(self, client: ImdsClient) -> PlatformIdentity | None:
        response = client.get(self.path, headers={"Metadata": "true"})

        if self.match is AzureMatch.STATUS:
            return self.platform

        if "azure" in response.text.lower():
            return self.platform

        logger.debug("azure: metadata answered without an Azure marker")
        return None


def build_probes(config: DetectorConfig) -> list[PlatformProbe]:
    """Build the default probe list in the configured order."""
    factories = {
        PlatformIdentity.AWS: lambda: AwsProbe(
            metadata_path=config.aws_metadata_path,
            token_ttl_seconds=config.aws_token_ttl_seconds,
        ),
        PlatformIdentity.AZURE: lambda: AzureProbe(
            match=config.azure_match,
            api_version=config.azure_api_version,
        ),
    }
    return [factories[platform]() for platform in config.probe_order]


class PlatformDetector:
    """Detect the cloud platform of the current host.

    Probes run strictly sequentially; the first probe that returns a platform
    wins. Worst-case latency is bounded by the per-request timeout times the
    number of requests the probes issue.
    """

    def __init__(
        self,
        config: DetectorConfig | None = None,
        probes: list[PlatformProbe] | None = None,
        client: ImdsClient | None = None,
    ):
        """Initialize detector.

        Args:
            config: Detection configuration (defaults to DetectorConfig())
            probes: Ordered probe list overriding config.probe_order
            client: IMDS client overriding config.imds_host/timeout
        """
        self.config = config or DetectorConfig()
        self.probes = probes if probes is not None else build_probes(self.config)
        self._owns_client = client is None
        self.client = client or ImdsClient(
            host=self.config.imds_host,
            timeout_ms=self.config.connect_timeout_ms,
        )

    def detect(self) -> PlatformIdentity:
        """Classify the current host.

        Returns:
            The first matching PlatformIdentity, or PlatformIdentity.UNKNOWN
        """
        for probe in self.probes:
            try:
                result = probe.probe(self.client)
            except ProbeError as e:
                logger.debug(f"{probe.name}: probe failed ({type(e).__name__}): {e}")
                continue
            except Exception as e:
                logger.warning(f"{probe.name}: unexpected probe error: {e!s}", exc_info=True)
                continue

            if result is not None:
                logger.debug(f"{probe.name}: probe matched")
                return result

        logger.debug("No probe matched, platform unknown")
        return PlatformIdentity.UNKNOWN

    def close(self) -> None:
        """Close the IMDS client if this detector created it."""
        if self._owns_client:
            self.client.close()


def detect_platform(config: DetectorConfig | None = None) -> PlatformIdentity:
    """Run a one-shot detection with a throwaway client."""
    config = config or DetectorConfig()
    detector = PlatformDetector(config)
    try:
        return detector.detect()
    finally:
        detector.close()


__all__ = [
    "AWS_IDENTITY_DOCUMENT_PATH",
    "AWS_METADATA_PATH",
    "AwsProbe",
    "AzureMatch",
    "AzureProbe",
    "DetectorConfig",
    "MalformedResponse",
    "NetworkUnreachable",
    "PlatformDetector",
    "PlatformIdentity",
    "PlatformProbe",
    "ProbeError",
    "ProbeHTTPError",
    "ProbeTimeout",
    "Unauthenticated",
    "build_probes",
    "detect_platform",
]
