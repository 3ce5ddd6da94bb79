"""Lustre stripe-count selection for large copied files."""

import asyncio
from pathlib import Path

# Decimal gigabytes, as lfs reports them
GB = 1000 * 1000 * 1000


class StripeError(RuntimeError):
    """``lfs setstripe`` failed for a destination file."""


class StripePolicy:
    """
    Maps a file size to a stripe count.

    Files up to ``no_stripe_size`` keep the filesystem default layout. Larger
    files get progressively wider stripes across the three bands.
    """

    def __init__(
        self,
        no_stripe_size: int = 10 * GB,
        medium_size: int = 100 * GB,
        large_size: int = 1000 * GB,
        counts: tuple[int, int, int] = (5, 10, 50),
    ):
        if not 0 <= no_stripe_size < medium_size < large_size:
            raise ValueError(
                f"Stripe size bands must increase, got {no_stripe_size}, {medium_size}, {large_size}"
            )
        if len(counts) != 3 or any(c < 1 for c in counts):
            raise ValueError(f"Need three positive stripe counts, got {counts}")
        self.no_stripe_size = no_stripe_size
        self.medium_size = medium_size
        self.large_size = large_size
        self.counts = tuple(counts)

    def stripe_count(self, size: int) -> int | None:
        """Stripe count for a file of ``size`` bytes, or None for the default layout."""
        if size <= self.no_stripe_size:
            return None
        if size < self.medium_size:
            return self.counts[0]
        if size < self.large_size:
            return self.counts[1]
        return self.counts[2]


class LfsStriper:
    """Creates an empty destination file with the requested stripe count."""

    def __init__(self, command: str = "lfs"):
        self.command = command

    async def set_stripe(self, path: Path, count: int) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                "setstripe",
                "-c",
                str(count),
                str(path),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise StripeError(f"Could not run {self.command}: {e}") from e

        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            raise StripeError(
                f"{self.command} setstripe -c {count} {path} exited with {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
