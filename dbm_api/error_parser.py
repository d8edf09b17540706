# dbm_api/error_parser.py

def parse_backup_error(stderr: str, engine: str) -> str:
    """
    Parses the error text of a failed backup and returns a human-readable summary.
    """
    stderr = (stderr or "").lower()

    if "not supported yet" in stderr:
        return "Unsupported Engine: backups for this database type are not implemented."
    if "timed out after" in stderr:
        return "Timeout: the dump did not finish within the configured time limit and was stopped."

    if "unable to find image" in stderr or "manifest unknown" in stderr or "pull access denied" in stderr:
        return "Docker Error: the PostgreSQL image for this server version could not be pulled."
    if "cannot connect to the docker daemon" in stderr:
        return "Docker Error: the Docker daemon is not running or not reachable."

    if engine == "postgresql":
        if "password authentication failed" in stderr:
            return "Authentication Error: the supplied password was rejected."
        if "authentication failed" in stderr:
            return "Authentication Error: the username or password is incorrect."
        if "does not exist" in stderr and "database" in stderr:
            return "Database Error: the specified database does not exist."
        if "connection refused" in stderr:
            return "Connection Error: could not connect to the database server. Check the host and port."
        if "could not translate host name" in stderr:
            return "Connection Error: the host name could not be resolved. Check the server address."
        if "timeout expired" in stderr:
            return "Connection Error: timed out while connecting to the server."
        if "server version mismatch" in stderr:
            return "Version Error: pg_dump is older than the server. Set the connection's PostgreSQL version."
        if "permission denied" in stderr:
            return "Permission Error: the user lacks the privileges required to take a backup."
        if "no such file or directory" in stderr and "pg_dump" in stderr:
            return "Tooling Error: pg_dump is not installed and Docker is unavailable."

    return "Unknown Error: the backup failed for an unidentified reason. Check the full error message for details."
