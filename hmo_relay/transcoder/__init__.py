"""
Transcode-and-relay pipeline.

- store: IntermediateStore, the append-only temp file between encoder and relay
- encoder: Encoder protocol, PyAV-based encoder, transcode exceptions
- session: TranscodeSession running an encoder in the background with a halt flag
- sinks: Sink protocol and the queue-backed sink used for HTTP streaming
- relay: StreamRelay draining a session's store into a sink
"""
