"""
Module providing the validation schemas for launcher configuration files.
"""

import datetime
import ipaddress

import voluptuous as v

from . import errors


def use_schema(schema):
    """
    Returns a function that validates incoming data using the given schema.

    If a ``voluptuous.MultipleInvalid`` error is raised, it is converted into
    a :py:class:`~.errors.ConfigurationError` that lists every invalid field
    by its path, e.g. ``vapps.0.vm.hardware_config.cpu``.
    """
    def validate(data, resource = None):
        try:
            return schema(data)
        except v.MultipleInvalid as exc:
            raise errors.ConfigurationError(
                'At least one field is invalid',
                # Build a dict of the errors
                { '.'.join(str(p) for p in e.path) or '<root>': e.msg for e in exc.errors },
                resource
            )
    return validate


def boolean():
    # The built-in Boolean validator ends up casting any value to a bool
    # We want to be stricter and actively reject anything except:
    #   - bool
    #   - 1 / 0
    #   - "1" / "0"
    #   - "true" / "false"
    #   - "yes" / "no"
    return v.Any(
        # Don't use "bool" because that would result in a coercion which we don't want
        v.In([True, False]),
        # This covers 0/1 and "0"/"1"
        v.All(int, v.In([0, 1]), bool),
        v.All(str, v.Lower, v.In(["true", "false", "yes", "no", "1", "0"]), v.Boolean()),
        msg = 'expected a boolean'
    )


def positive_integer():
    # We only want to coerce strings - not floats as that could
    # be an unexpected behaviour
    return v.All(
        v.Any(int, str, msg = 'expected an integer'),
        v.Coerce(int, msg = 'expected an integer'),
        v.Range(min = 1)
    )


def name():
    return v.All(str, v.Strip, v.Length(min = 1, msg = 'must not be empty'))


def ip_address(value):
    try:
        return str(ipaddress.ip_address(str(value)))
    except ValueError:
        raise v.Invalid('expected an IP address')


def metadata_value(value):
    # YAML gives us dates and datetimes directly
    if isinstance(value, (bool, int, float, str, datetime.date)):
        return value
    raise v.Invalid('expected a string, number, boolean or date')


NETWORK_CONNECTION = v.Schema({
    v.Required('name'): name(),
    v.Optional('ip_address'): ip_address,
    v.Optional('allocation_mode'): v.All(
        str, v.Upper, v.In(['MANUAL', 'POOL', 'DHCP'], msg = 'expected MANUAL, POOL or DHCP')
    ),
    v.Optional('primary', default = False): boolean(),
})


def network_connections(connections):
    """
    Checks the constraints between the network connections of a VM.
    """
    if sum(1 for c in connections if c['primary']) > 1:
        raise v.Invalid('at most one connection can be primary')
    for idx, conn in enumerate(connections):
        mode = conn.get('allocation_mode') or ('MANUAL' if 'ip_address' in conn else 'POOL')
        if mode == 'MANUAL' and 'ip_address' not in conn:
            raise v.Invalid('required for MANUAL allocation', path = [idx, 'ip_address'])
        if mode != 'MANUAL' and 'ip_address' in conn:
            raise v.Invalid('only allowed for MANUAL allocation', path = [idx, 'ip_address'])
        conn['allocation_mode'] = mode
    return connections


VM = v.Schema({
    v.Optional('name'): name(),
    v.Optional('source_vm'): name(),
    v.Optional('hardware_config', default = dict): {
        v.Optional('cpu'): positive_integer(),
        v.Optional('memory'): positive_integer(),
    },
    v.Optional('extra_disks', default = list): [{
        v.Required('name'): name(),
        v.Required('size'): positive_integer(),
    }],
    v.Optional('network_connections', default = list): v.All(
        [NETWORK_CONNECTION], network_connections
    ),
    v.Optional('metadata', default = dict): { v.Coerce(str): metadata_value },
    v.Exclusive('bootstrap', 'customization', msg = 'give only one of bootstrap and customization_script'): {
        v.Required('script_path'): name(),
        v.Optional('vars', default = dict): dict,
    },
    v.Exclusive('customization_script', 'customization', msg = 'give only one of bootstrap and customization_script'): str,
    v.Optional('computer_name'): name(),
    v.Optional('storage_profile'): name(),
})


def one_of(*keys, target = None):
    """
    Returns a validator that requires exactly one of the given alias keys and
    moves its value to the first key (or ``target``).
    """
    target = target or keys[0]
    def validator(data):
        present = [k for k in keys if k in data]
        if not present:
            raise v.Invalid('required', path = [target])
        if len(present) > 1:
            raise v.Invalid('give only one of {}'.format(', '.join(present)), path = [present[1]])
        data[target] = data.pop(present[0])
        return data
    return validator


def unique_vm_names(vapp):
    """
    Checks that the VMs of a vApp will not end up with the same name.
    """
    vms = vapp['vms']
    names = [
        vm.get('name') or (vapp['name'] if len(vms) == 1 else '{}-{}'.format(vapp['name'], idx))
        for idx, vm in enumerate(vms)
    ]
    for idx, vm_name in enumerate(names):
        if vm_name in names[:idx]:
            raise v.Invalid('duplicate VM name {}'.format(vm_name), path = ['vms', idx, 'name'])
    return vapp


VAPP = v.All(
    v.Schema({
        v.Required('name'): name(),
        v.Required('vdc_name'): name(),
        v.Optional('catalog'): name(),
        v.Optional('catalog_name'): name(),
        v.Optional('vapp_template'): name(),
        v.Optional('catalog_item'): name(),
        v.Optional('power_on', default = True): boolean(),
        v.Optional('vm'): VM,
        v.Optional('vms'): v.All([VM], v.Length(min = 1)),
    }),
    one_of('catalog', 'catalog_name'),
    one_of('catalog_item', 'vapp_template'),
    # The single VM form is normalised into a list
    one_of('vms', 'vm'),
    lambda vapp: dict(vapp, vms = vapp['vms'] if isinstance(vapp['vms'], list) else [vapp['vms']]),
    unique_vm_names
)


def unique_vapp_names(vapps):
    seen = set()
    for idx, vapp in enumerate(vapps):
        key = (vapp['vdc_name'], vapp['name'])
        if key in seen:
            raise v.Invalid('duplicate vApp name {}'.format(vapp['name']), path = [idx, 'name'])
        seen.add(key)
    return vapps


#: Validates a whole configuration file
validate_config = use_schema(v.Schema({
    v.Required('vapps'): v.All([VAPP], v.Length(min = 1), unique_vapp_names),
}))
