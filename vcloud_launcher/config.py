"""
This module loads launcher configuration files into provisioning specs.

A configuration file is YAML that is first rendered as a Jinja2 template, so
that values can come from the command line (``vars``) or the environment
(``env``). For example:

::

    vapps:
      - name: {{ vars.prefix }}-web
        vdc_name: my-vdc
        catalog: my-catalog
        vapp_template: ubuntu-14.04
        vm:
          hardware_config:
            cpu: 2
            memory: 4096
          network_connections:
            - name: frontend
              ip_address: 192.168.2.10
          bootstrap:
            script_path: bootstrap.sh.j2
            vars:
              message: hello world
"""

import logging
import os

import jinja2
import yaml

from . import dto, errors
from .validation import validate_config


_log = logging.getLogger(__name__)


def _environment(directory):
    return jinja2.Environment(
        loader = jinja2.FileSystemLoader(directory),
        undefined = jinja2.StrictUndefined,
        keep_trailing_newline = True
    )


def render_template(path, context):
    """
    Renders the Jinja2 template at the given path with the given context.

    Raises :py:class:`~.errors.ConfigurationError` if the template cannot be
    read or rendered.
    """
    directory, filename = os.path.split(os.path.abspath(path))
    try:
        return _environment(directory).get_template(filename).render(context)
    except jinja2.TemplateNotFound:
        raise errors.ConfigurationError('File does not exist', resource = path)
    except jinja2.TemplateError as exc:
        raise errors.ConfigurationError(
            'Could not render template', { '<template>': str(exc) }, path
        ) from exc


def _network_interfaces(connections):
    return tuple(
        dto.NetworkInterfaceSpec(
            conn['name'],
            idx,
            dto.AllocationMode(conn['allocation_mode']),
            conn.get('ip_address'),
            conn['primary']
        )
        for idx, conn in enumerate(connections)
    )


def _script(vm, vapp_name, base_dir):
    """
    Returns the guest customization script for a VM.

    Bootstrap scripts are templates that are rendered with the bootstrap vars
    and the vApp name.
    """
    if 'bootstrap' in vm:
        script_path = os.path.join(base_dir, vm['bootstrap']['script_path'])
        return render_template(
            script_path,
            { 'vars' : vm['bootstrap']['vars'], 'vapp_name' : vapp_name }
        )
    return vm.get('customization_script')


def _vm_spec(vm, vapp_name, base_dir):
    return dto.VmSpec(
        name = vm.get('name'),
        source_vm = vm.get('source_vm'),
        cpu = vm['hardware_config'].get('cpu'),
        memory = vm['hardware_config'].get('memory'),
        network_interfaces = _network_interfaces(vm['network_connections']),
        disks = tuple(
            dto.DiskSpec(disk['name'], disk['size'], idx)
            for idx, disk in enumerate(vm['extra_disks'])
        ),
        metadata = {
            key: dto.MetadataValue.from_python(value)
            for key, value in vm['metadata'].items()
        },
        script = _script(vm, vapp_name, base_dir),
        computer_name = vm.get('computer_name'),
        storage_profile = vm.get('storage_profile')
    )


def build_specs(config, base_dir = '.'):
    """
    Converts a validated configuration into provisioning specs.

    :param config: The validated configuration
    :param base_dir: The directory that relative script paths are resolved against
    :returns: A tuple of :py:class:`~vcloud_launcher.dto.ProvisioningSpec`
    """
    return tuple(
        dto.ProvisioningSpec(
            name = vapp['name'],
            vdc_name = vapp['vdc_name'],
            catalog = vapp['catalog'],
            catalog_item = vapp['catalog_item'],
            vms = tuple(_vm_spec(vm, vapp['name'], base_dir) for vm in vapp['vms']),
            power_on = vapp['power_on']
        )
        for vapp in config['vapps']
    )


def load(path, variables = None, environ = None):
    """
    Loads the provisioning specs from a configuration file.

    :param path: The path to the configuration file
    :param variables: Variables for the template, available as ``vars``
    :param environ: The environment for the template, available as ``env``
                    Defaults to ``os.environ``
    :returns: A tuple of :py:class:`~vcloud_launcher.dto.ProvisioningSpec`
    """
    _log.info('Loading configuration from %s', path)
    content = render_template(path, {
        'vars' : dict(variables or {}),
        'env'  : dict(os.environ if environ is None else environ),
    })
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise errors.ConfigurationError('Invalid YAML', { '<yaml>': str(exc) }, path) from exc
    config = validate_config(data if data is not None else {}, path)
    return build_specs(config, os.path.dirname(os.path.abspath(path)))
