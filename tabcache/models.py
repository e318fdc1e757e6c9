"""Data model of the remote experiment, configuration and control data."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Optional


class UnitIDType(enum.IntEnum):
    """Kind of identifier that traffic is split on."""

    UNKNOWN = 0
    DEFAULT = 1
    NEW_ID = 2


class TagType(enum.IntEnum):
    """Kind of a targeting tag."""

    UNKNOWN = 0
    STRING = 1
    NUMBER = 2
    VERSION = 3
    EMPTY = 4
    SET = 5
    BOOLEAN = 6
    DMP = 7


class HashType(enum.IntEnum):
    """Whether a layer hashes once (into groups) or twice (experiment, then group)."""

    UNKNOWN = 0
    SINGLE = 1
    DOUBLE = 2


class BucketType(enum.IntEnum):
    """How the buckets owned by an experiment or group are described."""

    UNKNOWN = 0
    RANGE = 1
    BITMAP = 2


class ModifyType(enum.IntEnum):
    """What happened to a bucket description since the version the caller holds."""

    UNKNOWN = 0
    UPDATE = 1
    DELETE = 2


class Code(enum.IntEnum):
    """Result code of a cache service response."""

    SUCCESS = 0
    SAME_VERSION = 1
    INVALID_PROJECT_ID = 2
    SERVER_ERROR = 3


@dataclass
class TrafficRange:
    """Inclusive bucket range ``[left, right]``."""

    left: int = 0
    right: int = 0


@dataclass
class DomainMetadata:
    key: str = ""
    bucket_size: int = 0
    traffic_range_list: list[TrafficRange] = field(default_factory=list)
    hash_seed: int = 0
    unit_id_type: UnitIDType = UnitIDType.DEFAULT


@dataclass
class Tag:
    key: str = ""
    tag_type: TagType = TagType.UNKNOWN
    operator: str = ""
    value: str = ""
    dmp_platform: int = 0
    unit_id_type: UnitIDType = UnitIDType.DEFAULT


@dataclass
class TagList:
    tag_list: list[Optional[Tag]] = field(default_factory=list)


@dataclass
class IssueInfo:
    tag_list_group: list[Optional[TagList]] = field(default_factory=list)


@dataclass
class Group:
    id: int = 0
    group_key: str = ""
    experiment_id: int = 0
    experiment_key: str = ""
    params: dict[str, str] = field(default_factory=dict)
    is_default: bool = False
    is_control: bool = False
    layer_key: str = ""
    issue_info: Optional[IssueInfo] = None
    unit_id_type: UnitIDType = UnitIDType.DEFAULT


@dataclass
class Experiment:
    id: int = 0
    key: str = ""
    hash_seed: int = 0
    bucket_size: int = 0
    group_id_index: dict[int, bool] = field(default_factory=dict)


@dataclass
class LayerMetadata:
    key: str = ""
    default_group: Optional[Group] = None
    hash_type: HashType = HashType.SINGLE
    hash_seed: int = 0
    unit_id_type: UnitIDType = UnitIDType.DEFAULT
    bucket_size: int = 0


@dataclass
class Layer:
    metadata: Optional[LayerMetadata] = None
    group_index: dict[int, Optional[Group]] = field(default_factory=dict)
    experiment_index: dict[int, Optional[Experiment]] = field(default_factory=dict)


@dataclass
class HoldoutDomain:
    metadata: Optional[DomainMetadata] = None
    layer_list: list[Optional[Layer]] = field(default_factory=list)


@dataclass
class MultiLayerDomain:
    metadata: Optional[DomainMetadata] = None
    layer_list: list[Optional[Layer]] = field(default_factory=list)


@dataclass
class Domain:
    metadata: Optional[DomainMetadata] = None
    holdout_domain_list: list[Optional[HoldoutDomain]] = field(default_factory=list)
    multi_layer_domain_list: list[Optional[MultiLayerDomain]] = field(default_factory=list)
    domain_list: list[Optional[Domain]] = field(default_factory=list)


@dataclass
class HoldoutData:
    holdout_layer_index: dict[str, Optional[Layer]] = field(default_factory=dict)


@dataclass
class ExperimentData:
    global_domain: Optional[Domain] = None
    holdout_data: Optional[HoldoutData] = None
    default_group_id: int = 0
    override_list: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass
class MetricsMetadata:
    name: str = ""
    id: str = ""
    token: str = ""


@dataclass
class MetricsConfig:
    is_automatic: bool = False
    is_enable: bool = False
    plugin_name: str = ""
    sampling_interval: int = 0
    err_sampling_interval: int = 0
    metadata: Optional[MetricsMetadata] = None


@dataclass
class ControlData:
    refresh_interval: int = 0
    event_metrics_config: Optional[MetricsConfig] = None
    metrics_init_config_index: dict[str, dict[str, str]] = field(default_factory=dict)


@dataclass
class TabConfig:
    experiment_data: Optional[ExperimentData] = None
    config_data: Any = None
    control_data: Optional[ControlData] = None


@dataclass
class BucketInfo:
    bucket_type: BucketType = BucketType.UNKNOWN
    traffic_range: Optional[TrafficRange] = None
    bitmap: bytes = b""
    version: str = ""
    modify_type: ModifyType = ModifyType.UNKNOWN


@dataclass
class TabConfigResponse:
    code: Code = Code.SUCCESS
    message: str = ""
    version: str = ""
    tab_config: Optional[TabConfig] = None


@dataclass
class BucketResponse:
    code: Code = Code.SUCCESS
    message: str = ""
    bucket_index: dict[int, BucketInfo] = field(default_factory=dict)