# tabcache

`tabcache` keeps a local, in-memory copy of each project's experiment
configuration for an A/B testing client. A background thread per project
refreshes that copy from a remote cache service that you supply.

The package uses only the standard library.

## Modules

- `tabcache.models`: dataclasses and enums for the data the service returns:
  `TabConfig`, `ExperimentData`, `Domain`, `HoldoutDomain`,
  `MultiLayerDomain`, `Layer`, `Group`, `Experiment`, `Tag`, `ControlData`,
  `MetricsConfig`, `BucketInfo`, plus the response types `TabConfigResponse`
  and `BucketResponse` with their `Code`.
- `tabcache.roaring`: `RoaringBitmap`, a set of unsigned 32-bit integers.
  It reads and writes the portable roaring serialization with
  `RoaringBitmap.from_bytes(data)` and `to_bytes()`. It also supports
  `add_range(start, stop)` for the half-open range `[start, stop)`, along
  with `in`, `len()`, iteration in ascending order, and `==`.
- `tabcache.indexing`: pure functions that derive indexes from a domain tree.
- `tabcache.cache`: `ApplicationCache`, the `CacheClient` protocol,
  `Application` snapshots, `RefreshEvent` and `CacheError`.

## What a snapshot holds

An `Application` holds the following for one project:

- `version` and `tab_config`, as last received;
- `layer_index`: every layer in the domain tree, keyed by layer key;
- `full_flow_layer_index`: the layers that receive all traffic;
- `layer_domain_metadata_index`: for each layer, the metadata of its
  enclosing domains, outermost first;
- `experiment_buckets` and `group_buckets`: the `BucketInfo` data by id;
- `experiment_bitmaps` and `group_bitmaps`: the bitmap-type buckets, already
  decoded into `RoaringBitmap` objects;
- `dmp_tag_info`: DMP tag values, grouped by unit id type and then by DMP
  platform;
- `variant_key_layer_map`: each default-group parameter, mapped to the layers
  that define it;
- `metrics_init_config_index`, taken from the control data.

`Application.copy()` returns a copy whose four bucket and bitmap dicts are
new dicts. Every other field is shared with the original.

## Usage

`CacheClient` is a `typing.Protocol`. Any object with the following three
methods will do:

- `get_tab_config(project_id, version)`, returning a `TabConfigResponse`;
- `get_experiment_buckets(project_id, version_index)`, returning a
  `BucketResponse`;
- `get_group_buckets(project_id, version_index)`, returning a
  `BucketResponse`.

The `version_index` argument maps each experiment or group id to the bucket
version already held. The value is `""` when no version is held yet.

```python
from tabcache.cache import ApplicationCache
from tabcache.models import BucketResponse, TabConfigResponse

class MyClient:
    def get_tab_config(self, project_id, version):
        ...  # return a TabConfigResponse

    def get_experiment_buckets(self, project_id, version_index):
        ...  # return a BucketResponse

    def get_group_buckets(self, project_id, version_index):
        ...  # return a BucketResponse

cache = ApplicationCache(MyClient(), event_sink=None)
cache.init(["123"])           # load each project and start refreshing it
app = cache.get("123")        # current snapshot, or None
print(app.version, sorted(app.layer_index))
cache.stop()                  # stop the background refresh threads
```

### Loading and refreshing

- `init(project_ids)` loads, in parallel, every project that is not cached
  yet. Each project that loads gets a refresh thread. If any project fails,
  the first `CacheError` is raised once all of the loads have finished.
- `refresh(project_id)` fetches the latest data once. It stores the new
  snapshot if the data changed, and returns the snapshot either way. Failures
  raise `CacheError`.
- `start_refresh(project_id)` starts a daemon thread that refreshes the
  project every `refresh_interval(project_id)` seconds. The interval comes
  from `ControlData.refresh_interval`. It is 3 seconds when that value is
  unset or not positive. The thread ends when the project leaves the cache.
- `stop()` signals every refresh thread to end and waits for it.
  `release()` drops all cached snapshots.
- `get(project_id)` and `set(application)` read and write the store
  directly.
- A `SUCCESS` response replaces the configuration and resets the retry
  count. A `SAME_VERSION` response keeps the configuration. After such a
  response the bucket data is still fetched again for the next 10 refreshes.
  After that, refreshes do no further work until a new version arrives. Any
  other code raises `CacheError`.
- Buckets marked `DELETE` or `UNKNOWN` are removed from the snapshot.
- If an `event_sink` is given, it is called as `event_sink(config, event)`
  after each background refresh. `config` is the control data's
  `event_metrics_config` and `event` is a `RefreshEvent`. The call happens
  only when that config exists and has `is_enable` set. `RefreshEvent` holds
  the project id, the latency in microseconds and the error text, if any. An
  exception raised by the sink is logged and ignored.

### Indexing helpers

The functions in `tabcache.indexing` can be used on their own:

- `is_full_flow_domain` and `has_traffic`;
- `build_layer_index` and `build_full_flow_layer_index`;
- `build_domain_metadata_index`;
- `build_dmp_tag_info` and `build_variant_key_layer_map`;
- `experiment_version_index` and `group_version_index`.

A malformed tree makes them raise `InvalidDataError`, which is a subclass of
`ValueError`.

## What this package does not do

- It contains no network client for a cache service. You provide the
  `CacheClient`.
- It does not deliver metrics. Refresh events go only to the `event_sink`
  you pass in.
- It does not assign users to experiment groups. It only keeps the data
  that such an assignment would read.
- It does not persist anything. The cache lives in memory only.

## Running the tests

```
pip install -e ".[test]"
pytest
```