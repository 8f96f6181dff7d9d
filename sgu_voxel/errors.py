#!/usr/bin/env python3
"""
SGU Voxel: Error Taxonomy
=========================

Every way a .sgu file can be rejected. All errors are non-retryable: a
corrupt voxel file has no safe partial interpretation, so the codecs raise
and the container pipeline only annotates the stage before re-raising.

License: MIT
"""

from typing import Optional


class ContainerError(ValueError):
    """
    Base class for all .sgu decode failures.

    Attributes:
        offset: Absolute byte offset at which the problem was detected,
            or None when no single offset applies
        stage: Pipeline stage that raised ("header", "metadata", "body",
            "compression"), set by the container pipeline
    """

    def __init__(self, message: str, offset: Optional[int] = None,
                 stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.offset = offset
        self.stage = stage

    @property
    def code(self) -> str:
        """Stable error name, e.g. 'InvalidMagic'."""
        return type(self).__name__

    def __str__(self) -> str:
        parts = []
        if self.stage:
            parts.append(f"[{self.stage}]")
        parts.append(self.message)
        if self.offset is not None:
            parts.append(f"(at byte {self.offset})")
        return " ".join(parts)


# Header
class InvalidMagic(ContainerError):
    pass


class TruncatedHeader(ContainerError):
    pass


class UnsupportedVersion(ContainerError):
    pass


class InvalidDimensions(ContainerError):
    pass


class ChecksumMismatch(ContainerError):
    pass


# Metadata
class TruncatedMetadata(ContainerError):
    pass


class TrailingMetadataBytes(ContainerError):
    pass


class InvalidMetadataType(ContainerError):
    pass


# Body
class TruncatedBody(ContainerError):
    pass


class TrailingBodyBytes(ContainerError):
    pass


class CoordinateOutOfBounds(ContainerError):
    pass


# Compression
class InconsistentCompressionFlag(ContainerError):
    pass


class UnknownCompressionAlgorithm(ContainerError):
    pass


class CompressionStreamCorrupt(ContainerError):
    pass


__all__ = [
    'ContainerError',
    'InvalidMagic',
    'TruncatedHeader',
    'UnsupportedVersion',
    'InvalidDimensions',
    'ChecksumMismatch',
    'TruncatedMetadata',
    'TrailingMetadataBytes',
    'InvalidMetadataType',
    'TruncatedBody',
    'TrailingBodyBytes',
    'CoordinateOutOfBounds',
    'InconsistentCompressionFlag',
    'UnknownCompressionAlgorithm',
    'CompressionStreamCorrupt',
]
