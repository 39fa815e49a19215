"""
vcloud-launch command line
"""

import logging
import signal
import sys
import threading

import click
from prettytable import PrettyTable

from . import config, errors
from .controlplane import ControlPlaneError, mock
from .controlplane.vcloud import VCloudSession
from .launch import Launch
from .settings import Settings, configure_logging


_log = logging.getLogger(__name__)


#: Exit status when every vApp launched
EXIT_OK = 0
#: Exit status when at least one vApp failed to launch
EXIT_FAILED = 1
#: Exit status when the configuration is invalid
EXIT_CONFIG = 2


def parse_vars(ctx, param, value):
    '''
    Converts repeated KEY=VALUE options into a dictionary.
    '''
    variables = {}
    for item in value:
        key, sep, val = item.partition('=')
        if not sep or not key:
            raise click.BadParameter('expected KEY=VALUE, got {}'.format(item))
        variables[key] = val
    return variables


def _fail_config(exc):
    click.echo('Configuration error: {}'.format(exc), err=True)
    sys.exit(EXIT_CONFIG)


def _session(settings, specs, dry_run):
    if dry_run:
        return mock.Session.for_specs(specs)
    missing = [
        name for name in ('ENDPOINT', 'USERNAME', 'PASSWORD')
        if not getattr(settings, name)
    ]
    if missing:
        _fail_config(errors.ConfigurationError(
            'Missing connection settings',
            { name: 'required' for name in missing },
            'settings'
        ))
    return VCloudSession(
        settings.ENDPOINT, settings.USERNAME, settings.PASSWORD, settings.VERIFY_SSL
    )


def _results_table(results):
    table = PrettyTable(['vapp', 'vdc', 'status', 'detail'])
    for result in results:
        if result.ok:
            row = [result.spec.name, result.spec.vdc_name, 'launched', result.vapp.href]
        else:
            detail = str(result.error)
            cleanup_error = getattr(result.error, 'cleanup_error', None)
            if cleanup_error is not None:
                detail = '{} (cleanup failed: {})'.format(detail, cleanup_error)
            row = [result.spec.name, result.spec.vdc_name, result.error.kind, detail]
        table.add_row(row)
    table.align = 'l'
    return table


@click.command()
@click.argument('config_files', nargs=-1, required=True,
                type=click.Path(exists=True, dir_okay=False))
@click.option('--dont-power-on', is_flag=True,
              help='leave the VMs powered off once they are configured')
@click.option('--retain-on-failure', is_flag=True,
              help='keep the vApps of failed launches.  ' +
                   'Also can set VCLOUD_LAUNCHER_NO_DELETE_VAPP in environment')
@click.option('--continue-on-error', is_flag=True,
              help='keep launching the remaining vApps after a failure')
@click.option('--max-workers', default=1, show_default=True, type=click.IntRange(min=1),
              help='number of vApps to launch at once')
@click.option('--var', 'variables', multiple=True, metavar='KEY=VALUE', callback=parse_vars,
              help='variable for the configuration templates, available as vars.KEY')
@click.option('--settings', 'settings_file', default=None,
              type=click.Path(exists=True, dir_okay=False),
              envvar='VCLOUD_LAUNCHER_SETTINGS',
              help='YAML file containing settings.  ' +
                   'Also can set VCLOUD_LAUNCHER_SETTINGS in environment')
@click.option('--dry-run', is_flag=True,
              help='launch against an in-memory control plane instead of vCloud Director')
@click.option('--verbose', '-v', is_flag=True, help='log debug messages')
def main(config_files, dont_power_on, retain_on_failure, continue_on_error,
         max_workers, variables, settings_file, dry_run, verbose):
    '''launch the vApps described in CONFIG_FILE(s)'''
    try:
        settings = Settings.load(settings_file)
    except errors.ConfigurationError as exc:
        _fail_config(exc)
    configure_logging('DEBUG' if verbose else settings.LOG_LEVEL)
    specs = []
    for path in config_files:
        try:
            specs.extend(config.load(path, variables))
        except errors.ConfigurationError as exc:
            _fail_config(exc)
    options = settings.launch_options(
        power_on=not dont_power_on,
        retain_on_failure=retain_on_failure or settings.NO_DELETE_VAPP
    )
    # Interrupting the launcher cancels the launches, which then clean up
    cancel = threading.Event()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: cancel.set())
    try:
        with _session(settings, specs, dry_run) as session:
            results = Launch.run_all(
                session,
                specs,
                options,
                continue_on_error=continue_on_error,
                max_workers=max_workers,
                cancel=cancel
            )
    except ControlPlaneError as exc:
        click.echo('Could not connect to vCloud Director: {}'.format(exc), err=True)
        sys.exit(EXIT_FAILED)
    finally:
        signal.signal(signal.SIGINT, previous_handler)
    click.echo(_results_table(results))
    sys.exit(EXIT_OK if all(r.ok for r in results) else EXIT_FAILED)
