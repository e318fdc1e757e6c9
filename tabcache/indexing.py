"""Indexes derived from the layer domain tree of an experiment configuration."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Optional, Union

from .models import (
    BucketInfo,
    Domain,
    DomainMetadata,
    HashType,
    HoldoutDomain,
    Layer,
    MultiLayerDomain,
    TabConfig,
    TagType,
    UnitIDType,
)


class InvalidDataError(ValueError):
    """The configuration tree is malformed."""


def is_full_flow_domain(metadata: DomainMetadata) -> bool:
    """Return whether the traffic ranges of a domain cover every bucket."""
    ranges = sorted(metadata.traffic_range_list, key=lambda r: (r.left, r.right))
    if not ranges or ranges[0].left > 1:
        return False
    right = ranges[0].right
    for traffic_range in ranges:
        if right + 1 < traffic_range.left:
            return False
        right = max(right, traffic_range.right)
    return right >= metadata.bucket_size


def has_traffic(metadata: DomainMetadata) -> bool:
    """Return whether any traffic range of a domain selects at least one bucket."""
    return any(
        0 < r.left <= r.right <= metadata.bucket_size for r in metadata.traffic_range_list
    )


_SubDomain = Union[HoldoutDomain, MultiLayerDomain]


def _is_usable(subdomain: Optional[_SubDomain]) -> bool:
    return (
        subdomain is not None
        and subdomain.metadata is not None
        and subdomain.metadata.bucket_size > 0
    )


def _index_layers(layers: Iterable[Optional[Layer]]) -> dict[str, Layer]:
    return {
        layer.metadata.key: layer
        for layer in layers
        if layer is not None and layer.metadata is not None and layer.metadata.bucket_size > 0
    }


def build_layer_index(domain: Optional[Domain]) -> dict[str, Layer]:
    """Map the key of every layer in the tree to the layer."""
    result: dict[str, Layer] = {}
    if domain is None:
        return result
    for subdomain in (*domain.holdout_domain_list, *domain.multi_layer_domain_list):
        if _is_usable(subdomain):
            result.update(_index_layers(subdomain.layer_list))
    for child in domain.domain_list:
        result.update(build_layer_index(child))
    return result


def build_full_flow_layer_index(domain: Optional[Domain]) -> dict[str, Layer]:
    """Map the key of every layer that receives all traffic to the layer.

    A holdout domain with traffic hides the multi-layer domains and
    subdomains that follow it.
    """
    result: dict[str, Layer] = {}
    if domain is None:
        return result
    if domain.metadata is None:
        raise InvalidDataError("invalid domain metadata")
    if not is_full_flow_domain(domain.metadata):
        return result
    for holdout in domain.holdout_domain_list:
        if not _is_usable(holdout):
            raise InvalidDataError("invalid domain metadata")
        if is_full_flow_domain(holdout.metadata):
            result.update(_index_layers(holdout.layer_list))
        if has_traffic(holdout.metadata):
            return result
    for multi_layer in domain.multi_layer_domain_list:
        if not _is_usable(multi_layer):
            raise InvalidDataError("invalid domain metadata")
        if is_full_flow_domain(multi_layer.metadata):
            result.update(_index_layers(multi_layer.layer_list))
    for child in domain.domain_list:
        result.update(build_full_flow_layer_index(child))
    return result


def build_domain_metadata_index(domain: Optional[Domain]) -> dict[str, list[DomainMetadata]]:
    """Map each layer key to the metadata of its enclosing domains, outermost first."""
    result: dict[str, list[DomainMetadata]] = {}
    _collect_domain_metadata(domain, [], result)
    return result


def _collect_domain_metadata(
    domain: Optional[Domain],
    parents: list[DomainMetadata],
    result: dict[str, list[DomainMetadata]],
) -> None:
    if domain is None or domain.metadata is None:
        return
    for subdomain in (*domain.holdout_domain_list, *domain.multi_layer_domain_list):
        if subdomain is None or subdomain.metadata is None:
            raise InvalidDataError("invalid domain metadata")
        chain = [*parents, domain.metadata, subdomain.metadata]
        for layer in subdomain.layer_list:
            if layer is None or layer.metadata is None:
                raise InvalidDataError(f"invalid layer: {layer!r}")
            result[layer.metadata.key] = chain
    for child in domain.domain_list:
        _collect_domain_metadata(child, [*parents, domain.metadata], result)


def build_dmp_tag_info(
    layer_index: Mapping[str, Layer],
) -> dict[UnitIDType, dict[int, set[str]]]:
    """Collect DMP tag values by unit id type and DMP platform."""
    result: dict[UnitIDType, dict[int, set[str]]] = {}
    for layer in layer_index.values():
        unit_id_type = layer.metadata.unit_id_type
        for group in layer.group_index.values():
            if group is None:
                raise InvalidDataError(f"[layerKey={layer.metadata.key}]group should not be nil")
            if group.issue_info is None:
                continue
            for tag_list in group.issue_info.tag_list_group:
                if tag_list is None:
                    continue
                for tag in tag_list.tag_list:
                    if tag is None:
                        raise InvalidDataError(f"[groupID={group.id}]invalid tag")
                    if tag.tag_type != TagType.DMP:
                        continue
                    platforms = result.setdefault(unit_id_type, {})
                    platforms.setdefault(tag.dmp_platform, set()).add(tag.value)
    return result


def build_variant_key_layer_map(layer_index: Mapping[str, Layer]) -> dict[str, list[str]]:
    """Map each parameter of a default group to the layers that define it."""
    result: dict[str, list[str]] = {}
    for layer_key, layer in layer_index.items():
        for group in layer.group_index.values():
            if group is not None and group.is_default:
                for key in group.params:
                    result.setdefault(key, []).append(layer_key)
    return result


def _holdout_layers(tab_config: Optional[TabConfig]) -> Iterator[Layer]:
    if tab_config is None or tab_config.experiment_data is None:
        return
    holdout_data = tab_config.experiment_data.holdout_data
    if holdout_data is None:
        return
    yield from (layer for layer in holdout_data.holdout_layer_index.values() if layer is not None)


def _experiment_ids(layer: Layer) -> Iterator[int]:
    return (
        experiment.id
        for experiment in layer.experiment_index.values()
        if experiment is not None and experiment.id != 0
    )


def _group_ids(layer: Layer) -> Iterator[int]:
    return (group.id for group in layer.group_index.values() if group is not None)


def experiment_version_index(
    layer_index: Mapping[str, Layer],
    tab_config: Optional[TabConfig],
    bucket_infos: Mapping[int, BucketInfo],
) -> dict[int, str]:
    """Map experiment ids that need bucket data to the version already held."""
    result: dict[int, str] = {}
    for layer in layer_index.values():
        if layer.metadata.hash_type == HashType.DOUBLE:
            result.update(dict.fromkeys(_experiment_ids(layer), ""))
    for layer in _holdout_layers(tab_config):
        result.update(dict.fromkeys(_experiment_ids(layer), ""))
    result.update({eid: info.version for eid, info in bucket_infos.items()})
    return result


def group_version_index(
    layer_index: Mapping[str, Layer],
    tab_config: Optional[TabConfig],
    bucket_infos: Mapping[int, BucketInfo],
) -> dict[int, str]:
    """Map group ids that need bucket data to the version already held."""
    result: dict[int, str] = {}
    for layer in layer_index.values():
        if layer is not None:
            result.update(dict.fromkeys(_group_ids(layer), ""))
    for layer in _holdout_layers(tab_config):
        result.update(dict.fromkeys(_group_ids(layer), ""))
    result.update({gid: info.version for gid, info in bucket_infos.items()})
    return result