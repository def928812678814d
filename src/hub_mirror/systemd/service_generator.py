#!/usr/bin/env python3

import os
import sys
import logging
from typing import Dict, Optional
from ..config.manager import ConfigManager

logger = logging.getLogger(__name__)

SERVICE_NAME = "hub-mirror"

class SystemdServiceGenerator:
    def __init__(self, config_manager: ConfigManager):
        self.config_manager = config_manager
        self.config = config_manager.get_config()
        self.service_dir = "/etc/systemd/system"
        self.user_service_dir = os.path.expanduser("~/.config/systemd/user")

    def generate_service_unit(self, user_mode: bool = False, environment_file: Optional[str] = None) -> str:
        # The cache and marker file are relative to the working directory
        working_directory = os.path.dirname(os.path.abspath(self.config.cache_file))

        if user_mode:
            user_directive = ""
        else:
            user_directive = "User=mirror\nGroup=mirror"

        environment_directive = f"EnvironmentFile={environment_file}" if environment_file else ""

        service_content = f"""[Unit]
Description=Docker Hub Mirror - incremental tag sync
After=network-online.target
Wants=network-online.target

[Service]
Type=oneshot
ExecStart={self._generate_sync_command()}
{user_directive}
{environment_directive}
WorkingDirectory={working_directory}
TimeoutStartSec=21600
StandardOutput=journal
StandardError=journal
SyslogIdentifier={SERVICE_NAME}

# Security settings
NoNewPrivileges=true
PrivateTmp=true

[Install]
WantedBy=multi-user.target
"""

        return service_content

    def generate_timer_unit(self, schedule: str = "daily") -> str:
        on_calendar = self._schedule_to_systemd_calendar(schedule)

        timer_content = f"""[Unit]
Description=Timer for Docker Hub Mirror
Requires={SERVICE_NAME}.service

[Timer]
OnCalendar={on_calendar}
RandomizedDelaySec=1800
Persistent=true

[Install]
WantedBy=timers.target
"""

        return timer_content

    def _generate_sync_command(self) -> str:
        command_parts = [
            sys.executable,
            "-m", "hub_mirror.cli",
            "--config", os.path.abspath(self.config_manager.config_path),
            "sync",
            os.path.abspath(os.path.expanduser(self.config.repos_file))
        ]

        return " ".join(command_parts)

    def _schedule_to_systemd_calendar(self, schedule: str) -> str:
        schedule_mapping = {
            "hourly": "hourly",
            "daily": "daily",
            "weekly": "weekly",
            "twice-daily": "*-*-* 06,18:00:00",
            "every-6-hours": "*-*-* 00,06,12,18:00:00"
        }

        return schedule_mapping.get(schedule, "daily")

    def create_service_files(self, user_mode: bool = False, enable_timer: bool = True,
                             schedule: str = "daily", environment_file: Optional[str] = None) -> Dict[str, str]:
        service_content = self.generate_service_unit(user_mode, environment_file)
        timer_content = self.generate_timer_unit(schedule)

        target_dir = self.user_service_dir if user_mode else self.service_dir
        os.makedirs(target_dir, exist_ok=True)

        service_file = os.path.join(target_dir, f"{SERVICE_NAME}.service")
        timer_file = os.path.join(target_dir, f"{SERVICE_NAME}.timer")

        try:
            with open(service_file, 'w') as f:
                f.write(service_content)
            logger.info(f"Created service file: {service_file}")

            if enable_timer:
                with open(timer_file, 'w') as f:
                    f.write(timer_content)
                logger.info(f"Created timer file: {timer_file}")

            return {
                'service_file': service_file,
                'timer_file': timer_file if enable_timer else None,
                'service_name': SERVICE_NAME
            }

        except PermissionError as e:
            error_msg = "Permission denied creating service files. Try running with sudo or use --user mode."
            logger.error(error_msg)
            raise PermissionError(error_msg) from e
