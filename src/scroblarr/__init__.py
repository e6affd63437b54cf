"""Scrobble playback between Plex, Jellyfin, Emby and Trakt."""
