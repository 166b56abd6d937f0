"""
antiscan File Templates

Renderers for the systemd units, rsyslog rule and logrotate config that
antiscan installs. Every identifier comes from the configuration so tests
can render against redirected names and paths.

Author: antiscan Project
License: GNU GPL v3
"""

import shutil


def _bin(name: str) -> str:
    """Absolute path of a system binary (systemd ExecStart needs one)."""
    return shutil.which(name) or f"/usr/sbin/{name}"


def ipset_restore_service(config) -> str:
    """Boot unit restoring the address sets before UFW and netfilter-persistent start."""
    ipset = _bin('ipset')
    iptables = _bin('iptables')
    ip6tables = _bin('ip6tables')
    return f"""[Unit]
Description=Restore antiscan ipset configuration
Before=ufw.service
Before=netfilter-persistent.service
DefaultDependencies=no

[Service]
Type=oneshot
RemainAfterExit=yes
ExecStart={ipset} restore -exist -f {config.ipset_config_path}
ExecStart=-{iptables} -N {config.chain_name}
ExecStart=-{ip6tables} -N {config.chain_name}

[Install]
WantedBy=multi-user.target
RequiredBy=netfilter-persistent.service
"""


def move_rules_service(config) -> str:
    """
    One-shot unit re-inserting the chain hook at position 1 after UFW starts.

    The delete lines are prefixed with '-' so a missing rule is not a failure.
    """
    iptables = _bin('iptables')
    ip6tables = _bin('ip6tables')
    chain = config.chain_name
    v4_hook = config.ufw_before_input_chain
    v6_hook = config.ufw6_before_input_chain
    return f"""[Unit]
Description=Move antiscan rules to position 1 in UFW chains
After=ufw.service
After=network.target

[Service]
Type=oneshot
RemainAfterExit=yes
ExecStart=/bin/sleep 2
ExecStart=-{iptables} -D {v4_hook} -j {chain}
ExecStart={iptables} -I {v4_hook} 1 -j {chain}
ExecStart=-{ip6tables} -D {v6_hook} -j {chain}
ExecStart={ip6tables} -I {v6_hook} 1 -j {chain}

[Install]
WantedBy=multi-user.target
"""


def aggregate_service(config) -> str:
    return f"""[Unit]
Description=antiscan Log Aggregator
After=rsyslog.service

[Service]
Type=oneshot
ExecStart={config.antiscan_bin} aggregate
StandardOutput=journal
StandardError=journal
"""


def aggregate_timer(config) -> str:
    return f"""[Unit]
Description=antiscan Log Aggregator Timer
Requires={config.aggregate_service_unit}

[Timer]
OnBootSec=1min
OnUnitActiveSec={config.aggregate_interval}sec
AccuracySec=5sec

[Install]
WantedBy=timers.target
"""


def rsyslog_config(config) -> str:
    """Route each family's LOG prefix to its own file and stop further processing."""
    return (
        f':msg, contains, "{config.log_prefix_v4}" {config.ipv4_log_path}\n'
        f'& stop\n'
        f':msg, contains, "{config.log_prefix_v6}" {config.ipv6_log_path}\n'
        f'& stop\n'
    )


def logrotate_config(config) -> str:
    create = f"create 0{config.log_file_mode} {config.log_file_owner} {config.log_file_group}"
    return f"""{config.ipv4_log_path} {config.ipv6_log_path} {{
    daily
    rotate 7
    compress
    delaycompress
    missingok
    notifempty
    {create}
    sharedscripts
    postrotate
        /usr/lib/rsyslog/rsyslog-rotate
    endscript
}}

{config.aggregate_csv_path} {{
    weekly
    rotate 4
    compress
    delaycompress
    missingok
    notifempty
    create 0640 root adm
}}
"""
