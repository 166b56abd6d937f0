from setuptools import setup, find_packages
from setuptools.command.install import install
from pathlib import Path
import shutil


class PostInstallCommand(install):
    """Post-installation for installation mode."""
    def run(self):
        install.run(self)

        config_dir = Path.home() / '.local' / 'share' / 'antiscan'
        config_file = config_dir / 'config.conf'
        template_file = Path(__file__).parent / 'config.conf.template'

        config_dir.mkdir(parents=True, exist_ok=True)

        # Never overwrite an operator's configuration
        if not config_file.exists() and template_file.exists():
            print(f"Installing default config to {config_file}")
            shutil.copy(template_file, config_file)
            print(f"Edit this file to customize chain, set and path names")
        elif config_file.exists():
            print(f"Config file already exists at {config_file}, not overwriting")
        else:
            print(f"Warning: Template file not found at {template_file}")


setup(
    name="antiscan",
    version="1.0.0",
    description="Block network scanners with ipset and iptables, safely alongside UFW",
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires=">=3.8",
    install_requires=[
        "pydantic>=2",
        "pydantic-settings>=2",
        "requests",
    ],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'antiscan=antiscan.main:main',
        ],
    },
    cmdclass={
        'install': PostInstallCommand,
    },
    package_data={
        '': ['config.conf.template'],
    },
    include_package_data=True,
)
