"""Device inventory and global settings, persisted as a generated JSON artifact.

The live artifact is regenerated wholesale on every commit. Each commit first
copies the current artifact to a timestamped sibling backup, keeps only the
newest backups, and then replaces the artifact through a temp file so a
failed write never leaves a half-written config behind.
"""

import ipaddress
import json
import logging
import os
import re
import shutil
import stat
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from urllib.parse import urlsplit

try:
    import pwd
except ImportError:  # Windows
    pwd = None

from avcontrols.errors import (
    BackupFailedError,
    ConfigValidationError,
    DuplicateNameError,
    InvalidBackupError,
    InvalidChannelError,
    InvalidIPError,
    InvalidNumberError,
    InvalidURLError,
    NotWritableError,
    StepError,
    StoreError,
    TimeoutConfigError,
    VolumeRangeError,
    WriteFailedError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Defaults and static enumerations
# =============================================================================

FORMAT_VERSION = 1

LOG_LEVELS = ("error", "info", "debug")

SECTIONS = ("receivers", "transmitters", "global", "all")

REMOTE_CONTROL_COMMANDS = (
    "power", "guide", "up", "down", "left", "right", "select",
    "channel_up", "channel_down", "0", "1", "2", "3", "4",
    "5", "6", "7", "8", "9", "last", "exit",
)

VOLUME_CONTROL_MODELS = ("3G+4+ TX", "3G+AVP RX", "3G+AVP TX", "3G+WP4 TX", "2G/3G SX")

ERROR_MESSAGES = {
    "connection": "Unable to connect to %s (%s). Please check the connection and try again.",
    "global": "Unable to connect to any receivers. Please check your network connection and try again.",
    "remote": "Unable to send remote command. Please try again.",
}

DEFAULT_LOG_FILE = "av_controls.log"

TRUTHY_MARKERS = ("1", "on", "true", "yes")

_INT_PATTERN = re.compile(r"^[+-]?(0|[1-9][0-9]*)$")


# =============================================================================
# Snapshot model
# =============================================================================

@dataclass(frozen=True)
class Receiver:
    name: str
    ip: str
    show_power: bool = False


@dataclass(frozen=True)
class Transmitter:
    name: str
    channel: int


@dataclass(frozen=True)
class GlobalSettings:
    max_volume: int = 11
    min_volume: int = 0
    volume_step: int = 1
    api_timeout: int = 5
    home_url: str = "http://localhost"
    log_level: str = "error"


@dataclass(frozen=True)
class ConfigSnapshot:
    """Full persisted configuration. Receivers and transmitters are keyed by name."""

    receivers: dict = field(default_factory=dict)
    transmitters: dict = field(default_factory=dict)
    settings: GlobalSettings = field(default_factory=GlobalSettings)
    remote_commands: tuple = REMOTE_CONTROL_COMMANDS
    volume_models: tuple = VOLUME_CONTROL_MODELS
    error_messages: dict = field(default_factory=lambda: dict(ERROR_MESSAGES))
    log_file: str = DEFAULT_LOG_FILE

    def receiver_by_ip(self, ip):
        """Return the first configured receiver with this IP, or None."""
        for receiver in self.receivers.values():
            if receiver.ip == ip:
                return receiver
        return None

    def error_message(self, key, *args):
        template = self.error_messages.get(key) or ERROR_MESSAGES[key]
        return template % args if args else template

    def replace(self, **changes):
        values = {
            "receivers": self.receivers,
            "transmitters": self.transmitters,
            "settings": self.settings,
            "remote_commands": self.remote_commands,
            "volume_models": self.volume_models,
            "error_messages": self.error_messages,
            "log_file": self.log_file,
        }
        values.update(changes)
        return ConfigSnapshot(**values)


# =============================================================================
# Field parsing
# =============================================================================

def parse_int(value):
    """Parse a form value as a strict integer; None if it is not one."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not _INT_PATTERN.match(text):
        return None
    return int(text)


def is_truthy(value):
    """Interpret a checkbox-style marker."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in TRUTHY_MARKERS


def is_valid_ipv4(value):
    try:
        ipaddress.IPv4Address(str(value).strip())
    except ValueError:
        return False
    return True


def is_valid_url(value):
    """Require an absolute URL with a scheme and a host, without whitespace."""
    if not isinstance(value, str) or not value or any(c.isspace() for c in value):
        return False
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return bool(parts.scheme) and bool(parts.netloc)


def _is_blank(value):
    return value is None or str(value).strip() == ""


# =============================================================================
# Section validation
# =============================================================================

def validate_receivers(rows):
    """Validate receiver rows into an ordered name -> Receiver mapping."""
    receivers = {}
    for row in rows or []:
        name = str(row.get("name") or "").strip()
        ip = row.get("ip")
        if not name or _is_blank(ip):
            continue
        if not is_valid_ipv4(ip):
            raise InvalidIPError(name)
        if name in receivers:
            raise DuplicateNameError("receiver", name)
        receivers[name] = Receiver(
            name=name,
            ip=str(ip).strip(),
            show_power=is_truthy(row.get("show_power")),
        )
    return receivers


def validate_transmitters(rows):
    """Validate transmitter rows into an ordered name -> Transmitter mapping."""
    transmitters = {}
    for row in rows or []:
        name = str(row.get("name") or "").strip()
        raw_channel = row.get("channel")
        if not name or _is_blank(raw_channel):
            continue
        channel = parse_int(raw_channel)
        if channel is None or channel < 1:
            raise InvalidChannelError(name)
        if name in transmitters:
            raise DuplicateNameError("transmitter", name)
        transmitters[name] = Transmitter(name=name, channel=channel)
    return transmitters


def validate_global(fields):
    """Validate the global settings fields."""
    max_volume = parse_int(fields.get("max_volume"))
    min_volume = parse_int(fields.get("min_volume"))
    volume_step = parse_int(fields.get("volume_step"))
    api_timeout = parse_int(fields.get("api_timeout"))

    if None in (max_volume, min_volume, volume_step, api_timeout):
        raise InvalidNumberError()
    if min_volume >= max_volume:
        raise VolumeRangeError()
    if volume_step <= 0:
        raise StepError()
    if api_timeout <= 0:
        raise TimeoutConfigError()

    home_url = fields.get("home_url")
    if isinstance(home_url, str):
        home_url = home_url.strip()
    if not is_valid_url(home_url):
        raise InvalidURLError()

    log_level = fields.get("log_level")
    if log_level not in LOG_LEVELS:
        log_level = "error"

    return GlobalSettings(
        max_volume=max_volume,
        min_volume=min_volume,
        volume_step=volume_step,
        api_timeout=api_timeout,
        home_url=home_url,
        log_level=log_level,
    )


# =============================================================================
# Serialization
# =============================================================================

def serialize(snapshot):
    """Render a snapshot as the generated config artifact."""
    document = {
        "version": FORMAT_VERSION,
        "receivers": {
            name: {"ip": receiver.ip, "show_power": receiver.show_power}
            for name, receiver in snapshot.receivers.items()
        },
        "transmitters": {
            name: transmitter.channel
            for name, transmitter in snapshot.transmitters.items()
        },
        "max_volume": snapshot.settings.max_volume,
        "min_volume": snapshot.settings.min_volume,
        "volume_step": snapshot.settings.volume_step,
        "api_timeout": snapshot.settings.api_timeout,
        "home_url": snapshot.settings.home_url,
        "log_level": snapshot.settings.log_level,
        "remote_control_commands": list(snapshot.remote_commands),
        "volume_control_models": list(snapshot.volume_models),
        "error_messages": dict(snapshot.error_messages),
        "log_file": snapshot.log_file,
    }
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def _mapping(value):
    return value if isinstance(value, dict) else {}


def _int_or_default(value, default):
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def parse(text):
    """Build a snapshot from artifact text, defaulting missing or mistyped entries."""
    document = json.loads(text)
    if not isinstance(document, dict):
        raise ValueError("Config artifact must be a JSON object")

    defaults = GlobalSettings()

    receivers = {}
    for name, entry in _mapping(document.get("receivers")).items():
        if not isinstance(entry, dict) or not isinstance(entry.get("ip"), str):
            logger.error("Ignoring malformed receiver entry: %s", name)
            continue
        receivers[name] = Receiver(name=name, ip=entry["ip"], show_power=bool(entry.get("show_power", False)))

    transmitters = {}
    for name, channel in _mapping(document.get("transmitters")).items():
        if isinstance(channel, bool) or not isinstance(channel, int):
            logger.error("Ignoring malformed transmitter entry: %s", name)
            continue
        transmitters[name] = Transmitter(name=name, channel=channel)

    home_url = document.get("home_url")
    log_level = document.get("log_level")
    settings = GlobalSettings(
        max_volume=_int_or_default(document.get("max_volume"), defaults.max_volume),
        min_volume=_int_or_default(document.get("min_volume"), defaults.min_volume),
        volume_step=_int_or_default(document.get("volume_step"), defaults.volume_step),
        api_timeout=_int_or_default(document.get("api_timeout"), defaults.api_timeout),
        home_url=home_url if isinstance(home_url, str) else defaults.home_url,
        log_level=log_level if log_level in LOG_LEVELS else defaults.log_level,
    )

    remote_commands = document.get("remote_control_commands")
    volume_models = document.get("volume_control_models")
    error_messages = document.get("error_messages")
    log_file = document.get("log_file")

    return ConfigSnapshot(
        receivers=receivers,
        transmitters=transmitters,
        settings=settings,
        remote_commands=tuple(remote_commands) if isinstance(remote_commands, list) else REMOTE_CONTROL_COMMANDS,
        volume_models=tuple(volume_models) if isinstance(volume_models, list) else VOLUME_CONTROL_MODELS,
        error_messages={**ERROR_MESSAGES, **error_messages} if isinstance(error_messages, dict) else dict(ERROR_MESSAGES),
        log_file=log_file if isinstance(log_file, str) and log_file else DEFAULT_LOG_FILE,
    )


# =============================================================================
# Store
# =============================================================================

@dataclass(frozen=True)
class BackupInfo:
    filename: str
    timestamp: datetime
    pre_restore: bool

    @property
    def label(self):
        label = self.timestamp.strftime("%B %d, %Y %I:%M:%S %p")
        return f"{label} (before restore)" if self.pre_restore else label


class ConfigStore:
    """Load, validate, commit and restore the config artifact."""

    BACKUP_PREFIX = "config_backup_"
    PRE_RESTORE_PREFIX = "config_backup_pre_restore_"
    BACKUP_SUFFIX = ".json"
    TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
    BACKUP_PATTERN = re.compile(
        r"^config_backup_(pre_restore_)?(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})\.json$"
    )
    MAX_BACKUPS = 3

    # Commit stages
    IDLE = "idle"
    VALIDATING = "validating"
    BACKING_UP = "backing_up"
    SERIALIZING = "serializing"
    WRITING = "writing"
    COMMITTED = "committed"
    FAILED = "failed"

    def __init__(self, path, clock=None, max_backups=None):
        self.path = os.path.abspath(path)
        self.directory = os.path.dirname(self.path)
        self._clock = clock or datetime.now
        self.max_backups = max_backups or self.MAX_BACKUPS
        self._snapshot = None
        self.state = self.IDLE
        self.failure_reason = None

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    @property
    def current(self):
        """The active snapshot; loaded on first access."""
        if self._snapshot is None:
            self._snapshot = self.load()
        return self._snapshot

    def reload(self):
        self._snapshot = self.load()
        return self._snapshot

    def load(self):
        """Read the live artifact, falling back to defaults when absent or corrupt."""
        if not os.path.exists(self.path):
            return ConfigSnapshot()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return parse(f.read())
        except (OSError, ValueError) as e:
            logger.error("Failed to load config %s: %s. Using defaults.", self.path, e)
            return ConfigSnapshot()

    def initialize(self):
        """Write the default artifact on first deployment."""
        if os.path.exists(self.path):
            return False
        try:
            os.makedirs(self.directory, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create config directory %s: %s", self.directory, e)
            raise WriteFailedError(f"Cannot create config directory {self.directory}.")
        self._write_atomic(serialize(ConfigSnapshot()))
        logger.info("Created default config at %s", self.path)
        return True

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_and_stage(self, section, fields, base=None):
        """Validate a settings submission and return the staged snapshot.

        Sections that are not part of the submission keep the values of
        `base` (the current snapshot by default). Raises a
        ConfigValidationError subclass on the first invalid field.
        """
        self.state = self.VALIDATING
        self.failure_reason = None
        base = base if base is not None else self.current
        if section not in SECTIONS:
            section = "all"

        try:
            receivers = base.receivers
            transmitters = base.transmitters
            settings = base.settings
            if section in ("receivers", "all"):
                receivers = validate_receivers(fields.get("receivers"))
            if section in ("transmitters", "all"):
                transmitters = validate_transmitters(fields.get("transmitters"))
            if section in ("global", "all"):
                settings = validate_global(fields)
        except ConfigValidationError as e:
            self._fail(e)
            raise

        return base.replace(receivers=receivers, transmitters=transmitters, settings=settings)

    # -------------------------------------------------------------------------
    # Writing
    # -------------------------------------------------------------------------

    def check_writable(self):
        """Raise NotWritableError unless the live artifact can be written."""
        target = self.path if os.path.exists(self.path) else self.directory
        if os.access(target, os.W_OK):
            return
        try:
            permissions = format(stat.S_IMODE(os.stat(target).st_mode), "04o")
            owner_uid = os.stat(target).st_uid
        except OSError:
            permissions, owner_uid = "unknown", None
        raise NotWritableError(
            self.path, permissions, _user_name(owner_uid), _user_name(_effective_uid())
        )

    def commit(self, snapshot):
        """Back up the live artifact, rotate backups and write the snapshot.

        Returns the backup filename (None when there was no live artifact to
        back up). On any failure the previous artifact stays authoritative.
        """
        try:
            self.check_writable()

            self.state = self.BACKING_UP
            backup_name = None
            if os.path.exists(self.path):
                backup_name = self._backup_current(self.BACKUP_PREFIX, BackupFailedError())
            self.prune_backups()

            self.state = self.SERIALIZING
            content = serialize(snapshot)

            self.state = self.WRITING
            self._write_atomic(content)
        except StoreError as e:
            self._fail(e)
            raise

        self._snapshot = snapshot
        self.state = self.COMMITTED
        logger.info("Configuration updated (backup: %s)", backup_name)
        return backup_name

    def restore(self, backup_id):
        """Replace the live artifact with a named backup from the store directory."""
        try:
            source = self._resolve_backup(backup_id)
            self.check_writable()

            self.state = self.BACKING_UP
            if os.path.exists(self.path):
                self._backup_current(
                    self.PRE_RESTORE_PREFIX,
                    BackupFailedError("Failed to backup current configuration before restore."),
                )

            self.state = self.WRITING
            try:
                with open(source, "r", encoding="utf-8") as f:
                    content = f.read()
            except OSError:
                raise WriteFailedError("Failed to restore from backup file.")
            self._write_atomic(content, WriteFailedError("Failed to restore from backup file."))
        except StoreError as e:
            self._fail(e)
            raise

        self.state = self.COMMITTED
        logger.info("Configuration restored from backup: %s", backup_id)
        return self.reload()

    # -------------------------------------------------------------------------
    # Backups
    # -------------------------------------------------------------------------

    def list_backups(self):
        """Return backups in the store directory, newest first."""
        backups = []
        try:
            names = os.listdir(self.directory)
        except OSError:
            return backups
        for name in names:
            match = self.BACKUP_PATTERN.match(name)
            if not match:
                continue
            timestamp = datetime.strptime(match.group(2), self.TIMESTAMP_FORMAT)
            backups.append(BackupInfo(filename=name, timestamp=timestamp, pre_restore=bool(match.group(1))))
        backups.sort(key=lambda b: (b.timestamp, b.filename), reverse=True)
        return backups

    def prune_backups(self):
        """Delete all but the newest backups. Failures are logged and ignored."""
        for backup in self.list_backups()[self.max_backups:]:
            try:
                os.remove(os.path.join(self.directory, backup.filename))
            except OSError as e:
                logger.error("Could not delete old backup %s: %s", backup.filename, e)

    def _backup_name(self, prefix):
        moment = self._clock()
        while True:
            name = f"{prefix}{moment.strftime(self.TIMESTAMP_FORMAT)}{self.BACKUP_SUFFIX}"
            if not os.path.exists(os.path.join(self.directory, name)):
                return name
            moment += timedelta(seconds=1)

    def _backup_current(self, prefix, error):
        name = self._backup_name(prefix)
        try:
            shutil.copyfile(self.path, os.path.join(self.directory, name))
        except OSError as e:
            logger.error("Backup of %s failed: %s", self.path, e)
            raise error
        return name

    def _resolve_backup(self, backup_id):
        if not isinstance(backup_id, str) or os.path.basename(backup_id) != backup_id:
            raise InvalidBackupError()
        if not self.BACKUP_PATTERN.match(backup_id):
            raise InvalidBackupError()
        source = os.path.join(self.directory, backup_id)
        if os.path.dirname(os.path.realpath(source)) != os.path.realpath(self.directory):
            raise InvalidBackupError()
        if not os.path.isfile(source):
            raise InvalidBackupError()
        return source

    def _write_atomic(self, content, error=None):
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".config-", suffix=".tmp", dir=self.directory)
        except OSError as e:
            logger.error("Cannot create temp file beside %s: %s", self.path, e)
            raise error or WriteFailedError()
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            if os.path.exists(self.path):
                os.chmod(tmp_path, stat.S_IMODE(os.stat(self.path).st_mode))
            else:
                os.chmod(tmp_path, 0o644)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error("Writing %s failed: %s", self.path, e)
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise error or WriteFailedError()

    def _fail(self, error):
        self.state = self.FAILED
        self.failure_reason = str(error)


def _effective_uid():
    return os.geteuid() if hasattr(os, "geteuid") else None


def _user_name(uid):
    if uid is None or pwd is None:
        return "unknown"
    try:
        return pwd.getpwuid(uid).pw_name
    except KeyError:
        return str(uid)
