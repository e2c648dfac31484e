"""
Edge daemon package for the YouLess-to-hub pipeline.

Polls a YouLess LS120 energy monitor over the local LAN, validates and
derives meter state, guards the device session with a watchdog, and
buffers capability updates locally for upload to the hub.

CHANGELOG:
- 2026-10-18: Initial creation (STORY-001)

TODO:
- None
"""
