"""Metadata-preserving copy between two trees."""

import os
from pathlib import Path

import aiofiles
import aiofiles.os

from .logging import log_with_context
from .metadata import EntryMeta, chmod, lchown, set_times, stat_entry
from .operations import Operation, refuse_system_path
from .striping import LfsStriper, StripeError, StripePolicy

# Just under 1 MiB, the buffer size the Lustre data movers were tuned with
COPY_BUFFER_SIZE = 1048559


class CopyOperation(Operation):
    """
    Copies regular files and symlinks from ``source_root`` to ``destination_root``.

    Destination directories are created (or have mode and ownership fixed
    up) before their children are copied. Files whose size, mode and mtime
    already match are skipped, which makes re-running a copy cheap.
    Files above the policy's smallest band get a wider stripe before they
    are created.
    """

    name = "copy"

    def __init__(
        self,
        source_root: str | Path,
        destination_root: str | Path,
        striper: LfsStriper | None = None,
        stripe_policy: StripePolicy | None = None,
        buffer_size: int = COPY_BUFFER_SIZE,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {buffer_size}")
        self.source_root = Path(os.path.abspath(source_root))
        self.destination_root = Path(os.path.abspath(destination_root))
        self.striper = striper
        self.stripe_policy = stripe_policy if stripe_policy is not None else StripePolicy()
        self.buffer_size = buffer_size

    def validate_root(self, root: Path) -> None:
        refuse_system_path(self.destination_root, "copy into")
        if self.destination_root == self.source_root or self.destination_root.is_relative_to(self.source_root):
            raise ValueError(
                f"Destination {self.destination_root} is inside source {self.source_root}; "
                "the copy would walk its own output"
            )

    def destination_for(self, path: Path) -> Path:
        """Map a source path to the same relative location under the destination root."""
        return self.destination_root / Path(os.path.relpath(path, self.source_root))

    async def pre_directory(self, directory: Path) -> None:
        """
        Make the destination directory match the source directory.

        A missing directory is created with the source mode and ownership.
        An existing one is updated in place. Any OSError aborts the subtree.
        """
        src_meta = await stat_entry(directory)
        dest_dir = self.destination_for(directory)

        try:
            dest_meta = await stat_entry(dest_dir)
        except FileNotFoundError:
            dest_meta = None

        if dest_meta is None:
            await aiofiles.os.mkdir(dest_dir, src_meta.permissions)
            await lchown(dest_dir, src_meta.uid, src_meta.gid)
            # mkdir is subject to the umask
            await chmod(dest_dir, src_meta.mode)
            self.logger.debug(f"Created directory: {dest_dir}")
            return

        if (dest_meta.uid, dest_meta.gid) != (src_meta.uid, src_meta.gid):
            await lchown(dest_dir, src_meta.uid, src_meta.gid)
            # chown may have cleared setgid
            await chmod(dest_dir, src_meta.mode)
        elif dest_meta.mode != src_meta.mode:
            await chmod(dest_dir, src_meta.mode)

    async def per_file(self, path: Path) -> None:
        try:
            src_meta = await stat_entry(path)
        except FileNotFoundError:
            self.logger.debug(f"Source vanished before copy: {path}")
            return
        except OSError as e:
            await self._entry_error("Error reading source file metadata", path, e)
            return

        dest = self.destination_for(path)

        if src_meta.is_regular:
            await self._copy_regular(path, dest, src_meta)
        elif src_meta.is_symlink:
            await self._copy_symlink(path, dest, src_meta)
        else:
            log_with_context(
                self.logger,
                "warning",
                "Skipping unsupported file type",
                {"path": str(path), "mode": oct(src_meta.mode)},
            )
            await self.counters.add(special_files_skipped=1)

    async def _existing(self, dest: Path) -> EntryMeta | None:
        try:
            return await stat_entry(dest)
        except FileNotFoundError:
            return None

    async def _copy_regular(self, path: Path, dest: Path, src_meta: EntryMeta) -> None:
        try:
            dest_meta = await self._existing(dest)
            if dest_meta is not None:
                if (
                    dest_meta.size == src_meta.size
                    and dest_meta.mode == src_meta.mode
                    and dest_meta.mtime_ns == src_meta.mtime_ns
                ):
                    await self.counters.add(files_skipped=1)
                    self.logger.debug(f"Already copied: {dest}")
                    return
                await aiofiles.os.remove(dest)
                log_with_context(self.logger, "info", "Destination file exists and is modified", {"path": str(dest)})
        except OSError as e:
            await self._entry_error("Error replacing destination file", dest, e)
            return

        try:
            src = await aiofiles.open(path, "rb")
        except OSError as e:
            await self._entry_error("Error opening source file", path, e)
            return

        try:
            stripe_count = self.stripe_policy.stripe_count(src_meta.size)
            if stripe_count is not None and self.striper is not None:
                try:
                    await self.striper.set_stripe(dest, stripe_count)
                except StripeError as e:
                    await self._entry_error("Error setting stripe", dest, e)
                    return

            try:
                out = await aiofiles.open(
                    dest,
                    "wb",
                    opener=lambda p, flags: os.open(p, flags, src_meta.permissions),
                )
            except OSError as e:
                await self._entry_error("Error opening destination file", dest, e)
                return

            copied = 0
            try:
                while True:
                    chunk = await src.read(self.buffer_size)
                    if not chunk:
                        break
                    await out.write(chunk)
                    copied += len(chunk)
                    await self.counters.add(bytes_transferred=len(chunk))
            except OSError as e:
                await self._entry_error("Error copying file", path, e)
                return
            finally:
                await out.close()
        finally:
            await src.close()

        await self._fix_attributes(dest, src_meta)
        self.logger.debug(f"Copied {copied} bytes: {path} -> {dest}")

    async def _fix_attributes(self, dest: Path, src_meta: EntryMeta) -> None:
        # Ownership first: chown clears setuid/setgid bits, chmod restores them
        try:
            await lchown(dest, src_meta.uid, src_meta.gid)
        except OSError as e:
            await self._entry_error("Error setting owner", dest, e)
        try:
            await chmod(dest, src_meta.mode)
        except OSError as e:
            await self._entry_error("Error setting mode", dest, e)
        try:
            await set_times(dest, src_meta.atime_ns, src_meta.mtime_ns)
        except OSError as e:
            await self._entry_error("Error setting times", dest, e)

    async def _copy_symlink(self, path: Path, dest: Path, src_meta: EntryMeta) -> None:
        target = src_meta.link_target
        try:
            dest_meta = await self._existing(dest)
            if dest_meta is not None:
                if dest_meta.is_symlink and dest_meta.link_target == target:
                    await self.counters.add(files_skipped=1)
                    self.logger.debug(f"Symlink already copied: {dest}")
                    return
                await aiofiles.os.remove(dest)
        except OSError as e:
            await self._entry_error("Error removing destination entry", dest, e)
            return

        try:
            await aiofiles.os.symlink(target, dest)
        except OSError as e:
            await self._entry_error("Error creating symlink", dest, e)
            return

        try:
            await lchown(dest, src_meta.uid, src_meta.gid)
        except OSError as e:
            await self._entry_error("Error setting symlink owner", dest, e)
