"""
release_orchestrator — cross-platform build-and-release orchestrator.

Fans one pinned source ref out to a build job per platform, stages each
packaged install tree in a content-addressed store, and publishes a single
release with checksums once every platform has succeeded.

Profile: llvm-tar-xz-v1
"""

__version__ = "1.0.0"
PACKAGE_NAME = "release_orchestrator"
ORCHESTRATOR_VERSION = "v1"
SCHEMA_VERSION = "1.0"
PROFILE_ID = "llvm-tar-xz-v1"
