"""Read migrations from a source and apply them to a database."""

from __future__ import annotations

import queue
import sys
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, BinaryIO, Callable, Iterable, Iterator, Optional, Protocol, TextIO

from .migration import Migration

__all__ = [
    "DEFAULT_LOCK_TIMEOUT",
    "DEFAULT_PREFETCH_MIGRATIONS",
    "NIL_VERSION",
    "DirtyError",
    "InvalidVersionError",
    "LockTimeoutError",
    "LockedError",
    "Logger",
    "MigrateError",
    "Migrator",
    "NilVersionError",
    "NoChangeError",
    "ShortLimitError",
    "VersionNotFoundError",
]

#: Number of migrations read from the source ahead of the one being applied.
DEFAULT_PREFETCH_MIGRATIONS = 10

#: Seconds a database driver has to acquire its lock.
DEFAULT_LOCK_TIMEOUT = 15.0

#: The version a database reports when no migration has been applied.
NIL_VERSION = -1

_POLL_INTERVAL = 0.05
_END = object()


class MigrateError(Exception):
    """Base class for errors raised while migrating."""


class NoChangeError(MigrateError):
    """Nothing was migrated because the database is already where asked."""

    def __init__(self) -> None:
        super().__init__("no change")


class NilVersionError(MigrateError):
    """No migration has been applied to the database yet."""

    def __init__(self) -> None:
        super().__init__("no migration")


class InvalidVersionError(MigrateError):
    """A version below -1 was given."""

    def __init__(self) -> None:
        super().__init__("version must be >= -1")


class LockedError(MigrateError):
    """The database is already locked by this migrator."""

    def __init__(self) -> None:
        super().__init__("database locked")


class LockTimeoutError(MigrateError):
    """The database lock could not be acquired in time."""

    def __init__(self) -> None:
        super().__init__("timeout: can't acquire database lock")


class ShortLimitError(MigrateError):
    """The source ran out of migrations before the limit was reached."""

    def __init__(self, short: int) -> None:
        super().__init__(f"limit {short} short")
        self.short = short


class DirtyError(MigrateError):
    """The database was left in a dirty state by an earlier failed migration."""

    def __init__(self, version: int) -> None:
        super().__init__(f"Dirty database version {version}. Fix and force version.")
        self.version = version


class VersionNotFoundError(MigrateError, FileNotFoundError):
    """The source has neither an up nor a down migration for a version."""

    def __init__(self, version: int) -> None:
        super().__init__(f"no migration found for version {version}: file does not exist")
        self.version = version


class Logger:
    """Receives progress messages; subclass to route them elsewhere."""

    def __init__(self, verbose: bool = False, stream: Optional[TextIO] = None) -> None:
        self.verbose = verbose
        self.stream = stream

    def printf(self, fmt: str, *args: Any) -> None:
        """Write ``fmt % args`` to the stream (standard error by default)."""
        stream = self.stream if self.stream is not None else sys.stderr
        stream.write(fmt % args if args else fmt)


class _SourceDriver(Protocol):
    def first(self) -> int: ...
    def prev(self, version: int) -> int: ...
    def next(self, version: int) -> int: ...
    def read_up(self, version: int) -> tuple[BinaryIO, str]: ...
    def read_down(self, version: int) -> tuple[BinaryIO, str]: ...
    def close(self) -> None: ...


class _DatabaseDriver(Protocol):
    def version(self) -> tuple[int, bool]: ...
    def set_version(self, version: int, dirty: bool) -> None: ...
    def run(self, body: BinaryIO) -> None: ...
    def lock(self) -> None: ...
    def unlock(self) -> None: ...
    def drop(self) -> None: ...
    def close(self) -> None: ...


class Migrator:
    """Moves a database between versions using migrations from a source.

    Source drivers raise ``FileNotFoundError`` for versions they do not have.
    """

    def __init__(
        self,
        source_name: str,
        source: _SourceDriver,
        database_name: str,
        database: _DatabaseDriver,
        *,
        log: Optional[Logger] = None,
        prefetch_migrations: int = DEFAULT_PREFETCH_MIGRATIONS,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self.source_name = source_name
        self.source = source
        self.database_name = database_name
        self.database = database
        self.log = log
        self.prefetch_migrations = prefetch_migrations
        self.lock_timeout = lock_timeout
        self._stop_requested = threading.Event()
        self._locked_mu = threading.Lock()
        self._is_locked = False

    def __enter__(self) -> "Migrator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the source and the database, attempting both."""
        self._log_verbose("Closing source and database\n")
        try:
            self.source.close()
        finally:
            self.database.close()

    def migrate(self, version: int) -> None:
        """Migrate up or down from the current version to ``version``."""
        if version < 0:
            raise InvalidVersionError()
        self._execute(lambda current: self.read(current, version))

    def steps(self, n: int) -> None:
        """Apply ``n`` up migrations if positive, ``-n`` down migrations if negative."""
        if n == 0:
            raise NoChangeError()
        if n > 0:
            self._execute(lambda current: self.read_up(current, n))
        else:
            self._execute(lambda current: self.read_down(current, -n))

    def up(self) -> None:
        """Apply all up migrations."""
        self._execute(lambda current: self.read_up(current, -1))

    def down(self) -> None:
        """Apply all down migrations."""
        self._execute(lambda current: self.read_down(current, -1))

    def drop(self) -> None:
        """Delete everything in the database."""
        with self._locked():
            self.database.drop()

    def run(self, *args: Migration) -> None:
        """Run the given migrations without consulting the source."""
        if not args:
            raise NoChangeError()
        self._execute(lambda _current: self._scheduled(args))

    def force(self, version: int) -> None:
        """Set the database version and clear the dirty flag, running nothing."""
        if version < NIL_VERSION:
            raise InvalidVersionError()
        with self._locked():
            self.database.set_version(version, False)

    def version(self) -> tuple[int, bool]:
        """Return ``(version, dirty)``; raise NilVersionError if none was applied."""
        current, dirty = self.database.version()
        if current == NIL_VERSION:
            raise NilVersionError()
        return current, dirty

    def graceful_stop(self) -> None:
        """Stop at the next safe point, leaving the database consistent."""
        self._stop_requested.set()

    def read(self, from_version: int, to_version: int) -> Iterator[Migration]:
        """Yield the migrations leading from ``from_version`` to ``to_version``."""
        if from_version >= 0:
            self._version_exists(from_version)
        if to_version >= 0:
            self._version_exists(to_version)
        if from_version == to_version:
            raise NoChangeError()

        if from_version < to_version:
            if from_version == NIL_VERSION:
                first = self.source.first()
                yield self.new_migration(first, first)
                from_version = first
            while from_version < to_version:
                if self._stop():
                    return
                following = self.source.next(from_version)
                yield self.new_migration(following, following)
                from_version = following
            return

        while from_version > to_version and from_version >= 0:
            if self._stop():
                return
            try:
                previous = self.source.prev(from_version)
            except FileNotFoundError:
                if to_version != NIL_VERSION:
                    raise
                yield self.new_migration(from_version, NIL_VERSION)
                return
            yield self.new_migration(from_version, previous)
            from_version = previous

    def read_up(self, from_version: int, limit: int) -> Iterator[Migration]:
        """Yield up to ``limit`` up migrations after ``from_version``; -1 means all."""
        if from_version >= 0:
            self._version_exists(from_version)
        if limit == 0:
            raise NoChangeError()

        count = 0
        while limit == -1 or count < limit:
            if self._stop():
                return
            if from_version == NIL_VERSION:
                first = self.source.first()
                yield self.new_migration(first, first)
                from_version = first
                count += 1
                continue
            try:
                following = self.source.next(from_version)
            except FileNotFoundError:
                if limit == -1 and count == 0:
                    raise NoChangeError() from None
                if limit == -1:
                    return
                if count == 0:
                    raise
                raise ShortLimitError(limit - count) from None
            yield self.new_migration(following, following)
            from_version = following
            count += 1

    def read_down(self, from_version: int, limit: int) -> Iterator[Migration]:
        """Yield up to ``limit`` down migrations from ``from_version``; -1 means all."""
        if from_version >= 0:
            self._version_exists(from_version)
        if limit == 0:
            raise NoChangeError()
        if from_version == NIL_VERSION and limit == -1:
            raise NoChangeError()
        if from_version == NIL_VERSION and limit > 0:
            raise FileNotFoundError("file does not exist")

        count = 0
        while limit == -1 or count < limit:
            if self._stop():
                return
            try:
                previous: Optional[int] = self.source.prev(from_version)
            except FileNotFoundError:
                previous = None

            if previous is None:
                if limit == -1 or limit - count > 0:
                    first = self.source.first()
                    yield self.new_migration(first, NIL_VERSION)
                    count += 1
                if count < limit:
                    raise ShortLimitError(limit - count)
                return

            yield self.new_migration(from_version, previous)
            from_version = previous
            count += 1

    def new_migration(self, version: int, target_version: int) -> Migration:
        """Build the migration taking ``version`` to ``target_version``."""
        reader = self.source.read_up if target_version >= version else self.source.read_down
        try:
            body, identifier = reader(version)
        except FileNotFoundError:
            migr = Migration(None, "", version, target_version)
        else:
            migr = Migration(body, identifier, version, target_version)

        if self.prefetch_migrations > 0 and migr.body is not None:
            self._log_verbose("Start buffering %s\n", migr.log_string())
        else:
            self._log_verbose("Scheduled %s\n", migr.log_string())
        return migr

    def lock(self) -> None:
        """Acquire the database lock, giving up after ``lock_timeout`` seconds."""
        with self._locked_mu:
            if self._is_locked:
                raise LockedError()

            done = threading.Event()
            failure: list[BaseException] = []

            def attempt() -> None:
                try:
                    self.database.lock()
                except BaseException as exc:  # noqa: BLE001 - handed back to caller
                    failure.append(exc)
                finally:
                    done.set()

            threading.Thread(target=attempt, name="migrate-lock", daemon=True).start()
            if not done.wait(self.lock_timeout):
                raise LockTimeoutError()
            if failure:
                raise failure[0]
            self._is_locked = True

    def unlock(self) -> None:
        """Release the database lock."""
        with self._locked_mu:
            self.database.unlock()
            self._is_locked = False

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.lock()
        try:
            yield
        except BaseException:
            try:
                self.unlock()
            except Exception as unlock_error:  # noqa: BLE001
                self._log_err(unlock_error)
            raise
        self.unlock()

    def _execute(self, plan: Callable[[int], Iterator[Migration]]) -> None:
        with self._locked():
            current, dirty = self.database.version()
            if dirty:
                raise DirtyError(current)
            self._run_migrations(plan(current))

    def _scheduled(self, migrations: Iterable[Migration]) -> Iterator[Migration]:
        for migr in migrations:
            if self.prefetch_migrations > 0 and migr.body is not None:
                self._log_verbose("Start buffering %s\n", migr.log_string())
            else:
                self._log_verbose("Scheduled %s\n", migr.log_string())
            yield migr

    def _run_migrations(self, migrations: Iterator[Migration]) -> None:
        channel: queue.Queue = queue.Queue(maxsize=max(1, self.prefetch_migrations))
        cancelled = threading.Event()

        def put(item: object) -> bool:
            while not cancelled.is_set():
                try:
                    channel.put(item, timeout=_POLL_INTERVAL)
                    return True
                except queue.Full:
                    continue
            return False

        def produce() -> None:
            outcome: object = _END
            try:
                for migr in migrations:
                    if not put(migr):
                        return
                    self._buffer_in_background(migr)
            except Exception as exc:  # noqa: BLE001 - delivered to the runner
                outcome = exc
            put(outcome)

        threading.Thread(target=produce, name="migrate-reader", daemon=True).start()
        try:
            while True:
                item = channel.get()
                if self._stop() or item is _END:
                    return
                if isinstance(item, BaseException):
                    raise item
                self._apply(item)
        finally:
            cancelled.set()

    def _buffer_in_background(self, migr: Migration) -> None:
        if migr.body is None:
            return

        def buffer() -> None:
            try:
                migr.buffer()
            except Exception as exc:  # noqa: BLE001
                self._log_err(exc)

        threading.Thread(target=buffer, name="migrate-buffer", daemon=True).start()

    def _apply(self, migr: Migration) -> None:
        self.database.set_version(migr.target_version, True)
        if migr.body is not None:
            self._log_verbose("Read and execute %s\n", migr.log_string())
            migr.buffer()
            self.database.run(migr.buffered_body)
        self.database.set_version(migr.target_version, False)

        if self.log is None:
            return
        end = datetime.now()
        finished_reading = migr.finished_reading or end
        started = migr.started_buffering or finished_reading
        read_time = finished_reading - started
        run_time = end - finished_reading
        if self.log.verbose:
            self.log.printf(
                "Finished %s (read %s, ran %s)\n", migr.log_string(), read_time, run_time
            )
        else:
            self.log.printf("%s (%s)\n", migr.log_string(), read_time + run_time)

    def _version_exists(self, version: int) -> None:
        for reader in (self.source.read_up, self.source.read_down):
            try:
                body, _identifier = reader(version)
            except FileExistsError:
                return
            except FileNotFoundError:
                continue
            body.close()
            return
        error = VersionNotFoundError(version)
        self._log_err(error)
        raise error

    def _stop(self) -> bool:
        return self._stop_requested.is_set()

    def _log_verbose(self, fmt: str, *args: Any) -> None:
        if self.log is not None and self.log.verbose:
            self.log.printf(fmt, *args)

    def _log_err(self, error: BaseException) -> None:
        if self.log is not None:
            self.log.printf("error: %s", error)