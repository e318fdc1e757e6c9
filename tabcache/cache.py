"""Local cache of experiment data, kept fresh from a remote cache service."""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Protocol

from .indexing import (
    build_dmp_tag_info,
    build_domain_metadata_index,
    build_full_flow_layer_index,
    build_layer_index,
    build_variant_key_layer_map,
    experiment_version_index,
    group_version_index,
)
from .models import (
    BucketInfo,
    BucketResponse,
    BucketType,
    Code,
    DomainMetadata,
    Layer,
    MetricsConfig,
    ModifyType,
    TabConfig,
    TabConfigResponse,
    UnitIDType,
)
from .roaring import RoaringBitmap

log = logging.getLogger(__name__)

MAX_RETRY_TIME = 10
DEFAULT_REFRESH_INTERVAL = 3


class CacheError(Exception):
    """Fetching or indexing the remote data failed."""


class CacheClient(Protocol):
    """Remote cache service that supplies configuration and bucket data."""

    def get_tab_config(self, project_id: str, version: str) -> Optional[TabConfigResponse]:
        """Fetch the configuration newer than ``version``."""
        ...

    def get_experiment_buckets(
        self, project_id: str, version_index: Mapping[int, str]
    ) -> Optional[BucketResponse]:
        """Fetch bucket data of the experiments whose held version is given."""
        ...

    def get_group_buckets(
        self, project_id: str, version_index: Mapping[int, str]
    ) -> Optional[BucketResponse]:
        """Fetch bucket data of the groups whose held version is given."""
        ...


@dataclass(frozen=True)
class RefreshEvent:
    """Outcome of one background refresh of a project."""

    project_id: str
    latency_us: float
    error: Optional[str] = None
    event_name: str = "refresh"
    timestamp: int = field(default_factory=lambda: int(time.time()))

    @property
    def succeeded(self) -> bool:
        return self.error is None


EventSink = Callable[[MetricsConfig, RefreshEvent], None]


@dataclass
class Application:
    """Everything cached locally for one project."""

    project_id: str
    version: str = ""
    tab_config: Optional[TabConfig] = None
    experiment_buckets: dict[int, BucketInfo] = field(default_factory=dict)
    experiment_bitmaps: dict[int, RoaringBitmap] = field(default_factory=dict)
    group_buckets: dict[int, BucketInfo] = field(default_factory=dict)
    group_bitmaps: dict[int, RoaringBitmap] = field(default_factory=dict)
    full_flow_layer_index: dict[str, Layer] = field(default_factory=dict)
    layer_index: dict[str, Layer] = field(default_factory=dict)
    layer_domain_metadata_index: dict[str, list[DomainMetadata]] = field(default_factory=dict)
    metrics_init_config_index: dict[str, dict[str, str]] = field(default_factory=dict)
    dmp_tag_info: dict[UnitIDType, dict[int, set[str]]] = field(default_factory=dict)
    variant_key_layer_map: dict[str, list[str]] = field(default_factory=dict)
    prepared_dmp_tag: bool = False
    disable_dmp_tag: bool = False
    retry_count: int = 0

    def copy(self) -> Application:
        """Return a copy whose bucket maps can be changed without touching this one."""
        return dataclasses.replace(
            self,
            experiment_buckets=dict(self.experiment_buckets),
            experiment_bitmaps=dict(self.experiment_bitmaps),
            group_buckets=dict(self.group_buckets),
            group_bitmaps=dict(self.group_bitmaps),
        )


class ApplicationCache:
    """Thread-safe store of applications with background refresh per project."""

    def __init__(self, client: CacheClient, event_sink: Optional[EventSink] = None) -> None:
        self._client = client
        self._event_sink = event_sink
        self._lock = threading.Lock()
        self._applications: dict[str, Application] = {}
        self._stopping = threading.Event()
        self._threads: list[threading.Thread] = []

    def get(self, project_id: str) -> Optional[Application]:
        with self._lock:
            return self._applications.get(project_id)

    def set(self, application: Optional[Application]) -> None:
        if application is None:
            return
        with self._lock:
            self._applications[application.project_id] = application

    def release(self) -> None:
        """Drop every cached application; refresh threads end on their next round."""
        with self._lock:
            self._applications = {}

    def init(self, project_ids: Iterable[str]) -> None:
        """Load every project not cached yet and start refreshing it in the background."""
        pending = [pid for pid in dict.fromkeys(project_ids) if self.get(pid) is None]
        if not pending:
            return
        first_error: Optional[CacheError] = None
        with ThreadPoolExecutor(max_workers=len(pending)) as pool:
            futures = [(pid, pool.submit(self.refresh, pid)) for pid in pending]
            for project_id, future in futures:
                try:
                    future.result()
                except CacheError as exc:
                    if first_error is None:
                        first_error = exc
                    continue
                self.start_refresh(project_id)
        if first_error is not None:
            raise first_error

    def refresh(self, project_id: str) -> Application:
        """Fetch the latest data and store it if it changed."""
        try:
            application, modified = self._build(project_id)
        except CacheError:
            raise
        except Exception as exc:
            log.error("refresh of %s failed unexpectedly: %s", project_id, exc)
            raise CacheError(f"refreshApplication: {exc}") from exc
        if modified:
            log.info("[projectID=%s] version=%s", application.project_id, application.version)
            self.set(application)
        return application

    def refresh_interval(self, project_id: str) -> int:
        """Seconds between background refreshes of a project."""
        application = self.get(project_id)
        if (
            application is None
            or application.tab_config is None
            or application.tab_config.control_data is None
        ):
            return DEFAULT_REFRESH_INTERVAL
        interval = application.tab_config.control_data.refresh_interval
        return interval if interval > 0 else DEFAULT_REFRESH_INTERVAL

    def start_refresh(self, project_id: str) -> None:
        """Refresh a cached project in a background thread until it leaves the cache."""
        if self.get(project_id) is None:
            return
        thread = threading.Thread(
            target=self._continuous_fetch,
            args=(project_id, self._stopping),
            name=f"refresh-{project_id}",
            daemon=True,
        )
        with self._lock:
            self._threads.append(thread)
        thread.start()

    def stop(self) -> None:
        """Stop every background refresh thread and wait for them to end."""
        self._stopping.set()
        with self._lock:
            threads, self._threads = self._threads, []
        for thread in threads:
            thread.join(timeout=10)
        self._stopping = threading.Event()

    def _continuous_fetch(self, project_id: str, stopping: threading.Event) -> None:
        while not stopping.is_set():
            if self.get(project_id) is None:
                log.warning("stop refresh %s", project_id)
                return
            start = time.perf_counter()
            error: Optional[str] = None
            try:
                self.refresh(project_id)
            except CacheError as exc:
                error = str(exc)
                log.error("[projectID=%s] refresh failed: %s", project_id, exc)
            latency_us = (time.perf_counter() - start) * 1_000_000
            self._emit_event(project_id, latency_us, error)
            stopping.wait(self.refresh_interval(project_id))

    def _emit_event(self, project_id: str, latency_us: float, error: Optional[str]) -> None:
        application = self.get(project_id)
        if self._event_sink is None or application is None or application.tab_config is None:
            return
        control_data = application.tab_config.control_data
        config = control_data.event_metrics_config if control_data is not None else None
        if config is None or not config.is_enable:
            return
        event = RefreshEvent(project_id=project_id, latency_us=latency_us, error=error)
        try:
            self._event_sink(config, event)
        except Exception as exc:  # a failing sink must not stop the refresh loop
            log.error("logMonitorEvent fail: %s", exc)

    def _build(self, project_id: str) -> tuple[Application, bool]:
        current = self.get(project_id)
        application = current.copy() if current is not None else Application(project_id)
        self._setup_tab_config(application)
        if application.retry_count > MAX_RETRY_TIME:
            return application, False
        tab_config = application.tab_config
        if tab_config is None or tab_config.experiment_data is None or tab_config.control_data is None:
            raise CacheError("no tab config available")
        global_domain = tab_config.experiment_data.global_domain
        try:
            application.layer_index = build_layer_index(global_domain)
            application.full_flow_layer_index = build_full_flow_layer_index(global_domain)
            application.layer_domain_metadata_index = build_domain_metadata_index(global_domain)
        except ValueError as exc:
            raise CacheError(f"build layer indexes: {exc}") from exc
        self._setup_experiment_buckets(application)
        self._setup_group_buckets(application)
        try:
            application.dmp_tag_info = build_dmp_tag_info(application.layer_index)
        except ValueError as exc:
            raise CacheError(f"setupDMPTagInfo: {exc}") from exc
        application.metrics_init_config_index = tab_config.control_data.metrics_init_config_index
        application.variant_key_layer_map = build_variant_key_layer_map(application.layer_index)
        return application, True

    def _setup_tab_config(self, application: Application) -> None:
        try:
            response = self._client.get_tab_config(application.project_id, application.version)
        except Exception as exc:
            raise CacheError(f"getTabConfigData: {exc}") from exc
        if response is None:
            raise CacheError("invalid tabConfigData")
        if response.code == Code.SUCCESS:
            config = response.tab_config
            if (
                config is None
                or config.experiment_data is None
                or config.config_data is None
                or config.control_data is None
            ):
                raise CacheError("invalid tabConfig")
            application.retry_count = 0
            application.tab_config = config
            application.version = response.version
        elif response.code == Code.SAME_VERSION:
            if application.retry_count <= MAX_RETRY_TIME:
                application.retry_count += 1
        else:
            raise CacheError(f"invalid code:{response.code!r}, message={response.message}")

    def _setup_experiment_buckets(self, application: Application) -> None:
        version_index = experiment_version_index(
            application.layer_index, application.tab_config, application.experiment_buckets
        )
        try:
            response = self._client.get_experiment_buckets(application.project_id, version_index)
        except Exception as exc:
            raise CacheError(f"batchGetExperimentBucketInfo: {exc}") from exc
        _apply_buckets(
            response, application.experiment_buckets, application.experiment_bitmaps, "experimentID"
        )

    def _setup_group_buckets(self, application: Application) -> None:
        version_index = group_version_index(
            application.layer_index, application.tab_config, application.group_buckets
        )
        if not version_index:
            return
        try:
            response = self._client.get_group_buckets(application.project_id, version_index)
        except Exception as exc:
            raise CacheError(f"batchGetGroupBucketInfo: {exc}") from exc
        _apply_buckets(response, application.group_buckets, application.group_bitmaps, "groupID")


def _apply_buckets(
    response: Optional[BucketResponse],
    buckets: dict[int, BucketInfo],
    bitmaps: dict[int, RoaringBitmap],
    label: str,
) -> None:
    if response is None:
        raise CacheError("invalid bucket response")
    if response.code != Code.SUCCESS:
        raise CacheError(f"invalid code:{response.code!r}, message={response.message}")
    for item_id, info in response.bucket_index.items():
        if info.modify_type in (ModifyType.DELETE, ModifyType.UNKNOWN):
            buckets.pop(item_id, None)
            bitmaps.pop(item_id, None)
            continue
        buckets[item_id] = info
        if info.bucket_type != BucketType.BITMAP:
            continue
        try:
            bitmaps[item_id] = RoaringBitmap.from_bytes(info.bitmap)
        except ValueError as exc:
            raise CacheError(f"[{label}={item_id}]new bitmap fromBuffer: {exc}") from exc