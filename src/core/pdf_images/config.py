from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping


CONFIG_FILE = Path("config.toml")


@dataclass(slots=True)
class RenderConfig:
    chunk_size: int = 20
    scale_page_to: int = 1536
    scale_tiers: tuple[int, ...] = (1536, 1024, 768)
    large_document_threshold: int = 200
    max_workers_per_request: int = 4
    render_timeout_s: int = 120
    use_pdftocairo: bool = True
    poppler_path: str | None = None


@dataclass(slots=True)
class CleanupConfig:
    retention_s: float = 600.0
    failure_retention_s: float = 0.0
    poll_interval_s: float = 1.0
    sweep_on_startup: bool = True


@dataclass(slots=True)
class RuntimeConfig:
    output_dir: Path = Path("output")
    temp_dir: Path = Path("tmp")
    log_dir: Path = Path("logs")
    log_file: str = "runs.jsonl"
    service_log_file: str = ""
    log_level: str = "INFO"
    public_prefix: str = "/images"
    enable_api: bool = True
    allow_local_sources: bool = False
    max_download_mb: int = 200
    fetch_timeout_s: float = 60.0
    max_inflight_requests: int = 8
    admission_timeout_s: float = 30.0
    render: RenderConfig = field(default_factory=RenderConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)

    @property
    def run_log_path(self) -> Path:
        return self.log_dir / self.log_file


@dataclass(slots=True)
class APIConfig:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass(slots=True)
class AppConfig:
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    api: APIConfig = field(default_factory=APIConfig)


def _read_toml(path: Path) -> Mapping[str, object]:
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _tuple_of_ints(value: object | None, default: Iterable[int]) -> tuple[int, ...]:
    if not value:
        return tuple(default)
    if isinstance(value, (int, str)):
        return (int(value),)
    if isinstance(value, Iterable):
        return tuple(int(item) for item in value)
    raise TypeError(f"Unsupported scale_tiers configuration: {value!r}")


def _build_render(data: Mapping[str, object] | None) -> RenderConfig:
    if not data:
        return RenderConfig()
    defaults = RenderConfig()
    poppler_path = data.get("poppler_path")
    return RenderConfig(
        chunk_size=int(data.get("chunk_size", defaults.chunk_size)),
        scale_page_to=int(data.get("scale_page_to", defaults.scale_page_to)),
        scale_tiers=_tuple_of_ints(data.get("scale_tiers"), defaults.scale_tiers),
        large_document_threshold=int(
            data.get("large_document_threshold", defaults.large_document_threshold)
        ),
        max_workers_per_request=int(
            data.get("max_workers_per_request", defaults.max_workers_per_request)
        ),
        render_timeout_s=int(data.get("render_timeout_s", defaults.render_timeout_s)),
        use_pdftocairo=bool(data.get("use_pdftocairo", defaults.use_pdftocairo)),
        poppler_path=str(poppler_path) if poppler_path else None,
    )


def _build_cleanup(data: Mapping[str, object] | None) -> CleanupConfig:
    if not data:
        return CleanupConfig()
    defaults = CleanupConfig()
    return CleanupConfig(
        retention_s=float(data.get("retention_s", defaults.retention_s)),
        failure_retention_s=float(data.get("failure_retention_s", defaults.failure_retention_s)),
        poll_interval_s=float(data.get("poll_interval_s", defaults.poll_interval_s)),
        sweep_on_startup=bool(data.get("sweep_on_startup", defaults.sweep_on_startup)),
    )


def _build_runtime(data: Mapping[str, object] | None) -> RuntimeConfig:
    if not data:
        return RuntimeConfig()
    defaults = RuntimeConfig()
    render = _build_render(data.get("render") if isinstance(data.get("render"), Mapping) else None)
    cleanup = _build_cleanup(data.get("cleanup") if isinstance(data.get("cleanup"), Mapping) else None)
    return RuntimeConfig(
        output_dir=Path(str(data.get("output_dir", defaults.output_dir))),
        temp_dir=Path(str(data.get("temp_dir", defaults.temp_dir))),
        log_dir=Path(str(data.get("log_dir", defaults.log_dir))),
        log_file=str(data.get("log_file", defaults.log_file)),
        service_log_file=str(data.get("service_log_file", defaults.service_log_file)),
        log_level=str(data.get("log_level", defaults.log_level)).upper(),
        public_prefix=str(data.get("public_prefix", defaults.public_prefix)),
        enable_api=bool(data.get("enable_api", defaults.enable_api)),
        allow_local_sources=bool(data.get("allow_local_sources", defaults.allow_local_sources)),
        max_download_mb=int(data.get("max_download_mb", defaults.max_download_mb)),
        fetch_timeout_s=float(data.get("fetch_timeout_s", defaults.fetch_timeout_s)),
        max_inflight_requests=int(data.get("max_inflight_requests", defaults.max_inflight_requests)),
        admission_timeout_s=float(data.get("admission_timeout_s", defaults.admission_timeout_s)),
        render=render,
        cleanup=cleanup,
    )


def _build_api(data: Mapping[str, object] | None) -> APIConfig:
    if not data:
        return APIConfig()
    return APIConfig(host=str(data.get("host", "127.0.0.1")), port=int(data.get("port", 3000)))


def load_config(path: Path | None = None) -> AppConfig:
    path = path or CONFIG_FILE
    raw = _read_toml(path)
    runtime_data = raw.get("runtime") if isinstance(raw, Mapping) else None
    api_data = raw.get("api") if isinstance(raw, Mapping) else None
    runtime = _build_runtime(runtime_data if isinstance(runtime_data, Mapping) else None)
    api = _build_api(api_data if isinstance(api_data, Mapping) else None)
    return AppConfig(runtime=runtime, api=api)


def dump_config(config: AppConfig) -> str:
    runtime = config.runtime
    payload = {
        "runtime": {
            "output_dir": str(runtime.output_dir),
            "temp_dir": str(runtime.temp_dir),
            "log_dir": str(runtime.log_dir),
            "log_file": runtime.log_file,
            "service_log_file": runtime.service_log_file,
            "log_level": runtime.log_level,
            "public_prefix": runtime.public_prefix,
            "enable_api": runtime.enable_api,
            "allow_local_sources": runtime.allow_local_sources,
            "max_download_mb": runtime.max_download_mb,
            "fetch_timeout_s": runtime.fetch_timeout_s,
            "max_inflight_requests": runtime.max_inflight_requests,
            "admission_timeout_s": runtime.admission_timeout_s,
            "render": {
                "chunk_size": runtime.render.chunk_size,
                "scale_page_to": runtime.render.scale_page_to,
                "scale_tiers": list(runtime.render.scale_tiers),
                "large_document_threshold": runtime.render.large_document_threshold,
                "max_workers_per_request": runtime.render.max_workers_per_request,
                "render_timeout_s": runtime.render.render_timeout_s,
                "use_pdftocairo": runtime.render.use_pdftocairo,
                "poppler_path": runtime.render.poppler_path,
            },
            "cleanup": {
                "retention_s": runtime.cleanup.retention_s,
                "failure_retention_s": runtime.cleanup.failure_retention_s,
                "poll_interval_s": runtime.cleanup.poll_interval_s,
                "sweep_on_startup": runtime.cleanup.sweep_on_startup,
            },
        },
        "api": {
            "host": config.api.host,
            "port": config.api.port,
        },
    }
    return json.dumps(payload, indent=2)
