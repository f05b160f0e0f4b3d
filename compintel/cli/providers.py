"""
Provider key commands for compintel CLI
"""

import click

from .session import build_service


@click.group('providers')
def providers_group():
    """Inspect AI provider keys"""
    pass


@providers_group.command('list')
def list_providers():
    """
    List providers with an active, validated key

    Examples:
        compintel providers list
    """
    service = build_service()
    providers = service.get_available_providers()

    if not providers:
        requirements = service.check_api_key_requirements()
        click.echo("No providers available.")
        for missing in requirements.missing_keys:
            click.echo(f"   Missing: {missing}")
        return

    click.echo(f"🔑 Available providers ({len(providers)})")
    for provider in providers:
        click.echo(f"   • {provider}")


@providers_group.command('validate')
def validate_providers():
    """
    Validate every available provider key

    Examples:
        compintel providers validate
    """
    service = build_service()
    results = service.validate_all_providers()

    if not results:
        click.echo("No providers to validate.")
        return

    for provider, valid in results.items():
        mark = "✅" if valid else "❌"
        click.echo(f"{mark} {provider}")

    invalid = [p for p, ok in results.items() if not ok]
    if invalid:
        click.echo(f"\n{len(invalid)} of {len(results)} provider key(s) failed validation", err=True)
