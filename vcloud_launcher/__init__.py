"""
Launches vApps on VMware vCloud Director from declarative YAML descriptions.
"""

__version__ = '1.0.0'
