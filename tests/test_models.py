import pytest

from tabcache.models import (
    BucketInfo,
    BucketResponse,
    Code,
    Domain,
    DomainMetadata,
    HashType,
    Layer,
    LayerMetadata,
    ModifyType,
    MultiLayerDomain,
    TrafficRange,
)


def test_mutable_defaults_are_not_shared():
    first = DomainMetadata()
    second = DomainMetadata()
    first.traffic_range_list.append(TrafficRange(1, 100))
    assert second.traffic_range_list == []
    assert first.traffic_range_list == [TrafficRange(1, 100)]


def test_layer_indexes_are_independent():
    first = Layer()
    second = Layer()
    first.group_index[1] = None
    assert 1 not in second.group_index


@pytest.mark.parametrize("code", list(Code))
def test_bucket_response_keeps_code_given_by_value(code):
    response = BucketResponse(code=Code(int(code)))
    assert response.code is code


@pytest.mark.parametrize("modify_type", list(ModifyType))
def test_bucket_info_keeps_modify_type_given_by_value(modify_type):
    info = BucketInfo(modify_type=ModifyType(int(modify_type)))
    assert info.modify_type is modify_type


@pytest.mark.parametrize("hash_type", list(HashType))
def test_layer_metadata_keeps_hash_type_given_by_value(hash_type):
    metadata = LayerMetadata(key="layer", hash_type=HashType(int(hash_type)))
    assert metadata.hash_type is hash_type


def test_nested_domain_structure_equality():
    layer = Layer(metadata=LayerMetadata(key="layer", bucket_size=10000))
    build = lambda: Domain(  # noqa: E731
        metadata=DomainMetadata(key="root", bucket_size=100),
        multi_layer_domain_list=[MultiLayerDomain(layer_list=[layer])],
    )
    assert build() == build()
    assert build().multi_layer_domain_list[0].layer_list[0].metadata.key == "layer"


def test_bucket_response_holds_bucket_infos():
    info = BucketInfo(version="v1", modify_type=ModifyType.UPDATE)
    response = BucketResponse(bucket_index={7: info})
    assert response.code is Code.SUCCESS
    assert response.bucket_index[7].version == "v1"
    assert BucketInfo().modify_type is ModifyType.UNKNOWN