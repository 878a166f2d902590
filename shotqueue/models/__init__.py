"""
Models package for ShotQueue

- ScreenshotQueueManager: Bounded screenshot queue
- ProcessingClient: Multipart submission to the analysis endpoint
- HostCaptureService: Host IPC contract and the local Pillow-backed host
- SettingsManager: Application configuration management
"""
