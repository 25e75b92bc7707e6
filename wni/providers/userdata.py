"""Startup scripts handed to Windows machines at creation time.

The scripts only open remote management (WinRM over HTTPS) so that the node
bootstrap can reach the machine; installing the node agent happens elsewhere.
"""

from __future__ import annotations

import base64

from wni.constants import WINRM_HTTPS_PORT

WINRM_SETUP_SCRIPT = f"""\
$cert = New-SelfSignedCertificate -CertStoreLocation Cert:\\LocalMachine\\My -DnsName $env:COMPUTERNAME
winrm quickconfig -q
winrm create winrm/config/Listener?Address=*+Transport=HTTPS "@{{Hostname=`"$env:COMPUTERNAME`";CertificateThumbprint=`"$($cert.Thumbprint)`"}}"
winrm set winrm/config/service/auth '@{{Basic="true"}}'
New-NetFirewallRule -DisplayName 'WinRM HTTPS' -Direction Inbound -Protocol TCP -LocalPort {WINRM_HTTPS_PORT} -Action Allow
"""


def ec2_user_data() -> str:
    """User data for EC2, run by EC2Launch on first boot."""
    return f"<powershell>\n{WINRM_SETUP_SCRIPT}</powershell>\n<persist>true</persist>\n"


def gce_startup_metadata() -> list[dict[str, str]]:
    """Metadata items that make GCE run the script on boot."""
    return [{"key": "windows-startup-script-ps1", "value": WINRM_SETUP_SCRIPT}]


def azure_setup_command() -> str:
    """Command for the Azure CustomScriptExtension that runs the script once."""
    encoded = base64.b64encode(WINRM_SETUP_SCRIPT.encode("utf-16-le")).decode("ascii")
    return f"powershell -NoProfile -ExecutionPolicy Unrestricted -EncodedCommand {encoded}"
