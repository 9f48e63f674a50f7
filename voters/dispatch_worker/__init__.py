"""Side-effect dispatch worker: notification emails and remote backups."""
