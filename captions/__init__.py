"""
Caption Sync — Captions Package

Caption processing and synchronization:
  - timestamps: timing line codec with malformed-value recovery
  - sanitizer: cue text markup whitelist and entity decoding
  - cue_parser: fault-tolerant WebVTT / SRT parsing into validated cues
  - quality_scorer: weighted ranking of candidate caption files
  - content_cache: bounded TTL + LRU cache for downloaded content
  - resources: releasable, reference-counted content handles
  - events: observer signals and event payloads
  - synchronizer: bucketed cue lookup, transitions and drift correction
  - sources: subtitle sources (local files, in-memory)
  - language_manager: per-session language selection, caching and switching
  - diagnostics: telemetry snapshot export
  - cue_writer: WebVTT / SRT output
"""
