import logging


def refresh_presence(services) -> int:
    """Re-write the online record of every registered session.

    Presence keys expire after ``presence_ttl_seconds``; a socket that stays
    open longer than that would otherwise read as offline.
    """
    refreshed = 0
    for session in services.registry.sessions():
        if services.presence.mark_online(session.user_id):
            refreshed += 1
    return refreshed


def start_presence_keepalive(socketio, services, settings: dict):
    """Start a lightweight background loop that keeps live users online.

    Runs as a Socket.IO background task so it cooperates with eventlet.
    """

    def _loop():
        while True:
            # Re-read settings each cycle so config reloads take effect live.
            try:
                interval = int(settings.get("presence_refresh_seconds", 3600))
            except (TypeError, ValueError):
                interval = 3600
            interval = max(30, min(interval, 24 * 3600))

            n = refresh_presence(services)
            if n:
                logging.debug("[JANITOR] refreshed presence for %d users", n)

            socketio.sleep(interval)

    return socketio.start_background_task(_loop)
