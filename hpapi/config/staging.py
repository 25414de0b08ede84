SETTINGS = {
    "logging": {"level": "DEBUG"},
    "service": {"port": 3000},
    "LOCKOUT": {"EXPOSE_LOCK_STATUS": True},
}
