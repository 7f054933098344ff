"""
Core cache engine.

`FileCache` owns the worker thread and all cache state. Each song is fetched
by a `DownloadTask`, which asks the `SpaceReclaimer` for room before writing.
`PlaybackCoordinator` is the consumer side: it turns cache events into
playback decisions.
"""
