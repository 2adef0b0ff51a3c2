"""
Configuration for ags-export.

Two input shapes are accepted:
- a pipe-delimited services file, one service per line: ``url|name|throttle_ms``
- a YAML file holding run settings plus either an inline ``services`` list or
  a ``services_file`` reference

Everything resolves into a single ExportConfig value that is passed to the
orchestrator. No module-level state.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qsl

import yaml

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = "./output"
DEFAULT_SERVICES_FILE = "services.txt"


class ConfigError(Exception):
    """Raised when configuration is missing or invalid."""
    pass


@dataclass(frozen=True)
class ServiceTarget:
    """One service to export. Immutable for the run."""
    url: str
    name: str
    throttle: float = 0.0           # seconds between chunk request issues
    chunk_concurrency: int = 1

    def __post_init__(self) -> None:
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Invalid URL for service {self.name!r}: {self.url}")
        if not self.name or not self.name.strip("/ "):
            raise ConfigError(f"Missing name for service {self.url}")
        if self.throttle < 0:
            raise ConfigError(f"Throttle must be >= 0 for service {self.name!r}")
        if self.chunk_concurrency < 1:
            raise ConfigError(f"chunk_concurrency must be >= 1 for service {self.name!r}")

    @property
    def base_url(self) -> str:
        """Service address without query string or trailing slash."""
        url = self.url.split("?", 1)[0]
        return url[:-1] if url.endswith("/") else url

    @property
    def user_params(self) -> Dict[str, str]:
        """Query parameters embedded in the configured address."""
        if "?" not in self.url:
            return {}
        return dict(parse_qsl(self.url.split("?", 1)[1], keep_blank_values=True))

    @property
    def short_name(self) -> str:
        return self.name.strip("/").split("/")[-1]


@dataclass
class HttpSettings:
    """Transport knobs handed to HttpClient."""
    total_retries: int = 5
    backoff_factor: float = 0.5
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    num_pools: int = 20

    def __post_init__(self) -> None:
        if self.total_retries < 0:
            raise ConfigError("http.total_retries must be >= 0")
        if self.connect_timeout <= 0 or self.read_timeout <= 0:
            raise ConfigError("http timeouts must be > 0")


@dataclass
class ExportConfig:
    """Complete run configuration."""
    output_dir: Path
    services: List[ServiceTarget]
    max_concurrent_services: Optional[int] = None
    convert_to_shapefile: bool = False
    http: HttpSettings = field(default_factory=HttpSettings)
    logging: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.output_dir = Path(self.output_dir)
        if self.max_concurrent_services is not None and self.max_concurrent_services < 1:
            raise ConfigError("max_concurrent_services must be >= 1 when set")
        self._validate_service_dirs()

    def _validate_service_dirs(self) -> None:
        """Every service must own its directory and staging directory outright.

        Names are compared after sanitizing and case folding, the way they land
        on disk.
        """
        from .workspace import ServiceLayout

        seen = []
        for service in self.services:
            layout = ServiceLayout.for_target(self.output_dir, service)
            service_key = _path_key(layout.service_dir)
            staging_key = _path_key(layout.staging_dir)
            for other, other_service_key, other_staging_key in seen:
                if service_key == other_service_key:
                    raise ConfigError(
                        f"Services '{other.name}' and '{service.name}' resolve to the same directory {layout.service_dir}"
                    )
                if _is_within(service_key, other_staging_key) or _is_within(other_service_key, staging_key):
                    raise ConfigError(
                        f"Services '{other.name}' and '{service.name}' overlap: one is inside the other's staging directory"
                    )
            seen.append((service, service_key, staging_key))


def _path_key(path: Path) -> tuple:
    return tuple(part.casefold() for part in path.parts)


def _is_within(child: tuple, parent: tuple) -> bool:
    return child[:len(parent)] == parent


def parse_service_line(
    line: str,
    default_throttle_ms: float = 0,
    chunk_concurrency: int = 1
) -> Optional[ServiceTarget]:
    """Parse one ``url|name|throttle_ms`` line. Returns None for blank/comment lines."""
    line = line.strip()
    if not line or line.startswith("#"):
        return None

    parts = [p.strip() for p in line.split("|")]
    if len(parts) < 2 or not parts[0]:
        raise ConfigError(f"Expected 'url|name[|throttle_ms]', got: {line!r}")

    throttle_ms = default_throttle_ms
    if len(parts) > 2 and parts[2]:
        try:
            throttle_ms = float(parts[2])
        except ValueError as e:
            raise ConfigError(f"Invalid throttle {parts[2]!r} for service {parts[1]!r}") from e

    return ServiceTarget(
        url=parts[0],
        name=parts[1],
        throttle=throttle_ms / 1000.0,
        chunk_concurrency=chunk_concurrency,
    )


def load_services_file(
    path: Path,
    default_throttle_ms: float = 0,
    chunk_concurrency: int = 1
) -> List[ServiceTarget]:
    """Load services from a pipe-delimited text file, keeping file order."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read services file {path}: {e}") from e

    services = []
    for line in text.splitlines():
        if (service := parse_service_line(line, default_throttle_ms, chunk_concurrency)) is not None:
            services.append(service)
    return services


def _service_from_mapping(raw: Dict[str, Any], default_throttle_ms: float, chunk_concurrency: int) -> ServiceTarget:
    try:
        url = raw["url"]
        name = raw["name"]
    except KeyError as e:
        raise ConfigError(f"Service entry missing {e}: {raw}") from e

    throttle_ms = raw.get("throttle_ms")
    if throttle_ms is None:
        throttle_ms = default_throttle_ms

    return ServiceTarget(
        url=str(url).strip(),
        name=str(name).strip(),
        throttle=float(throttle_ms) / 1000.0,
        chunk_concurrency=int(raw.get("chunk_concurrency", chunk_concurrency)),
    )


def build_config(
    raw: Dict[str, Any],
    base_dir: Optional[Path] = None,
    *,
    services_file: Optional[Path] = None,
    output_dir: Optional[Path] = None
) -> ExportConfig:
    """Build an ExportConfig from a parsed mapping plus CLI overrides."""
    base_dir = base_dir or Path.cwd()
    default_throttle_ms = float(raw.get("default_throttle_ms", 0) or 0)
    chunk_concurrency = int(raw.get("chunk_concurrency", 1) or 1)

    services: List[ServiceTarget] = []
    if services_file is None and raw.get("services"):
        services = [
            _service_from_mapping(s, default_throttle_ms, chunk_concurrency)
            for s in raw["services"]
        ]
    else:
        path = Path(services_file or raw.get("services_file") or DEFAULT_SERVICES_FILE)
        if not path.is_absolute() and services_file is None:
            path = base_dir / path
        services = load_services_file(path, default_throttle_ms, chunk_concurrency)

    if not services:
        raise ConfigError("No services configured")

    try:
        http = HttpSettings(**(raw.get("http") or {}))
    except TypeError as e:
        raise ConfigError(f"Invalid http settings: {e}") from e

    out = output_dir or raw.get("output_dir") or DEFAULT_OUTPUT_DIR

    config = ExportConfig(
        output_dir=Path(out),
        services=services,
        max_concurrent_services=raw.get("max_concurrent_services"),
        convert_to_shapefile=bool(raw.get("convert_to_shapefile", False)),
        http=http,
        logging=raw.get("logging") or {},
    )
    logger.info(f"Configuration loaded: {len(config.services)} services")
    return config


def load_config(
    config_path: Optional[Path] = None,
    services_file: Optional[Path] = None,
    output_dir: Optional[Path] = None
) -> ExportConfig:
    """Load configuration from an optional YAML file plus CLI overrides."""
    raw: Dict[str, Any] = {}
    base_dir = Path.cwd()

    if config_path is not None:
        config_path = Path(config_path)
        base_dir = config_path.parent
        try:
            with config_path.open("r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Configuration load error: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Configuration root must be a mapping: {config_path}")

    return build_config(raw, base_dir, services_file=services_file, output_dir=output_dir)
