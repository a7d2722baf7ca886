"""Command line entry point: resolve settings, run one backup, exit."""

import sys

import click

from s3backup import __version__, configure_logging
from s3backup.config import load_settings, ConfigError, OPTION_NAMES
from s3backup.backup.compression import ARCHIVE_FORMATS
from s3backup.backup.executor import BackupOrchestrator


def _settings_option(name, help_text, **kwargs):
    """A flag that overrides the configuration file when given."""
    return click.option(f'--{name}', OPTION_NAMES[name], default=None, help=help_text, **kwargs)


SETTINGS_OPTIONS = [
    _settings_option('endpoint', 'Object store endpoint, host[:port]'),
    _settings_option('access-key-id', 'The access key id'),
    _settings_option('secret-access-key', 'The secret access key'),
    _settings_option('bucket-name', 'The bucket name'),
    _settings_option('ssl', 'Whether to use ssl [default: true]', type=click.BOOL),
    _settings_option('location', 'The location (region) name [default: us-east-1]'),
    _settings_option('max-backups', 'Maximum number of backups to keep, 0 keeps all [default: 5]', type=int),
    _settings_option('backup-prefix', 'Backup prefix [default: backup-]'),
    _settings_option('backup-folder', 'The folder to backup'),
    _settings_option('archive-format', 'Archive format [default: zip]',
                     type=click.Choice(list(ARCHIVE_FORMATS.keys()))),
    _settings_option('temp-dir', 'Where to build the archive [default: system temp dir]'),
    _settings_option('smtp-hostname', 'The hostname used for the smtp server'),
    _settings_option('smtp-port', 'The port used for the smtp server [default: 25]', type=int),
    _settings_option('smtp-username', 'The username used for the smtp server'),
    _settings_option('smtp-password', 'The password used for the smtp server'),
    _settings_option('smtp-from-email', 'The FROM email used for the smtp server'),
    _settings_option('smtp-verify-tls', 'Verify the smtp server certificate [default: false]', type=click.BOOL),
    _settings_option('notify-success', 'Whether to notify on success messages [default: false]', type=click.BOOL),
    _settings_option('notify-error', 'Whether to notify on error messages [default: false]', type=click.BOOL),
    _settings_option('notify-email', 'To whom to send the email notification'),
]


def settings_options(f):
    for option in reversed(SETTINGS_OPTIONS):
        f = option(f)
    return f


@click.command(context_settings={'auto_envvar_prefix': 'S3BACKUP'})
@click.option('--config', 'config_path', type=click.Path(dir_okay=False),
              help='JSON configuration file [default: ~/.s3backup-config.json or ./s3backup-config.json]')
@click.option('--log-file', type=click.Path(dir_okay=False), help='Also log to this rotating file')
@click.option('-v', '--verbose', is_flag=True, help='Debug logging')
@settings_options
@click.version_option(__version__, prog_name='s3backup')
def cli(config_path, log_file, verbose, **overrides):
    """Archive a folder, upload it to an S3-compatible bucket and keep the newest backups."""
    configure_logging(verbose=verbose, log_file=log_file)

    try:
        settings = load_settings(config_path, overrides)
    except ConfigError as e:
        raise click.UsageError(str(e))

    outcome = BackupOrchestrator(settings).run()
    sys.exit(outcome.exit_code)


def main():
    cli()


if __name__ == '__main__':
    main()
