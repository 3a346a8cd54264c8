# powerctl/clients/ssh_client.py
import logging
from typing import Optional, Tuple

import paramiko

log = logging.getLogger("powerctl.clients.ssh")


class SSHRunner:
    """Runs one command per connection on a remote node with key-based auth."""

    def __init__(self, user: str = "root", key_file: Optional[str] = None, connect_timeout: float = 10,
                 command_timeout: float = 120):
        self.user = user
        self.key_file = key_file
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    def run(self, host: str, command: str) -> Tuple[int, str, str]:
        """
        Execute `command` on `host`. Returns (rc, stdout, stderr); connection
        problems are reported as rc 255 like the ssh binary does.
        """
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                host,
                username=self.user,
                key_filename=self.key_file,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
            )
            stdin, stdout, stderr = client.exec_command(command, timeout=self.command_timeout)
            out = stdout.read().decode(errors="ignore").strip()
            err = stderr.read().decode(errors="ignore").strip()
            rc = stdout.channel.recv_exit_status()
            return rc, out, err
        except Exception as e:
            # a suspending node often drops the session before the exit status arrives
            log.debug("ssh %s@%s failed: %s", self.user, host, e)
            return 255, "", str(e)
        finally:
            client.close()
