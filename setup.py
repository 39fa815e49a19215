#!/usr/bin/env python3

import os
from setuptools import setup, find_packages


here = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(here, 'README.md')) as f:
    README = f.read()

if __name__ == "__main__":
    setup(
        name = 'vcloud-launcher',
        version = '1.0.0',
        description = 'Launches vApps on VMware vCloud Director from YAML descriptions.',
        long_description = README,
        long_description_content_type = 'text/markdown',
        classifiers = [
            "Programming Language :: Python",
            "Programming Language :: Python :: 3",
            "Environment :: Console",
            "Topic :: System :: Systems Administration",
        ],
        keywords = 'vcloud vcd vapp launcher',
        packages = find_packages(),
        package_data = {
            'vcloud_launcher.controlplane.vcloud': ['*.xml'],
        },
        include_package_data = True,
        zip_safe = False,
        python_requires = '>=3.7',
        install_requires = [
            'python-dateutil',
            'requests',
            'jinja2',
            'PyYAML',
            'voluptuous',
            'click',
            'prettytable',
        ],
        extras_require = {
            'test': ['pytest'],
        },
        entry_points = {
            'console_scripts': [
                'vcloud-launch = vcloud_launcher.cli:main',
            ],
        },
    )
