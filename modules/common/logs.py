import logging


_pylog = logging.getLogger("c1c")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


class _Log:
    def human(self, level: str, message: str, **fields):
        _pylog.log(_LEVELS.get(level.lower(), logging.INFO), message, extra=fields)


log = _Log()


def guild_label(guild):
    return getattr(guild, "name", None) or str(getattr(guild, "id", "?"))


def channel_label(guild, channel_id):
    if not channel_id:
        return "unset"
    channel = guild.get_channel(channel_id) if hasattr(guild, "get_channel") else None
    name = getattr(channel, "name", None)
    return f"#{name} ({channel_id})" if name else f"#{channel_id}"
