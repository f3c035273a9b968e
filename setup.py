from setuptools import setup, find_packages

from dhcpsession import VERSION

setup(
    name="dhcpsession",
    description="DHCP client session supervision for network managers",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={
        "dhcpsession": ["udhcpc.sh"],
    },
    install_requires=[
        "systemd-python",
    ],
    extras_require={
        "test": [
            "hypothesis",
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "dhcpsession-monitor = dhcpsession.programs.dhcpsession_monitor:main",
        ],
    },
    python_requires=">=3.11",
    version=VERSION,
)
