# This file is part of awsmgr. See LICENSE file for license information.
"""Small helpers shared by the AWS modules and the console."""

import logging
import secrets
import shlex
import string
import traceback
from typing import List, Optional

import yaml

log = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits

ROOT_PASSWORD_SCRIPT = """\
#!/bin/bash
echo {credentials} | chpasswd
sed -i 's/^#\\?PermitRootLogin.*/PermitRootLogin yes/' /etc/ssh/sshd_config
sed -i 's/^#\\?PasswordAuthentication.*/PasswordAuthentication yes/' \
/etc/ssh/sshd_config
service sshd restart || service ssh restart
"""


def random_suffix(length: int = 6) -> str:
    """Return a random lowercase alphanumeric string."""
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def cut(text: Optional[str], length: int) -> str:
    """Truncate ``text`` to at most ``length`` characters."""
    if length <= 0 or not text:
        return ""
    return text[:length]


def build_user_data(
    root_password: Optional[str] = None,
    user_data: Optional[str] = None,
) -> str:
    """Assemble instance user data.

    Without a root password the user data is returned as given. With one,
    a ``#cloud-config`` document gets the password settings merged in;
    anything else is treated as a shell script and runs after a script that
    sets the password and enables password SSH logins.

    Args:
        root_password: password to set for root, or None
        user_data: user supplied user data, or None

    Returns:
        user data string, empty if there is nothing to run
    """
    user_data = user_data or ""
    if not root_password:
        return user_data

    if user_data.strip().startswith("#cloud-config"):
        user_data_yaml = yaml.safe_load(user_data) or {}
        user_data_yaml["disable_root"] = False
        user_data_yaml["ssh_pwauth"] = True
        user_data_yaml["chpasswd"] = {
            "expire": False,
            "users": [
                {"name": "root", "password": root_password, "type": "text"}
            ],
        }
        # pyyaml will "helpfully" split long lines on dump, which we do not
        # want. Use an absurdly large width to keep each value on one line.
        new_data = yaml.safe_dump(user_data_yaml, width=999999999)
        return "#cloud-config\n" + new_data

    script = ROOT_PASSWORD_SCRIPT.format(
        credentials=shlex.quote("root:" + root_password)
    )
    if user_data.strip():
        script += "\n" + user_data
    return script


def log_exception_list(exceptions: List[Exception]):
    """Log a list of exceptions (including traceback)."""
    if exceptions:
        log.error("Encountered exception(s) during cleanup!")
        for i, e in enumerate(exceptions, start=1):
            tb = traceback.format_exception(type(e), e, e.__traceback__)
            log.error("===== EXCEPTION %s =====\n%s", i, "".join(tb))
