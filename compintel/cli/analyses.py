"""
Competitor analysis commands for compintel CLI
"""

import uuid
from pathlib import Path
from typing import Optional, Tuple

import click

from ..core.errors import CompetitorAnalysisError
from .session import build_service


def _parse_models(pairs: Tuple[str, ...]) -> Optional[dict]:
    """Turn ('openai=gpt-4o', ...) into {'openai': 'gpt-4o', ...}."""
    if not pairs:
        return None
    models = {}
    for pair in pairs:
        provider, sep, model = pair.partition('=')
        if not sep or not provider or not model:
            raise click.BadParameter(f"Expected provider=model, got '{pair}'", param_hint='--model')
        models[provider.strip()] = model.strip()
    return models


@click.group('analyses')
def analyses_group():
    """Start and manage competitor analyses"""
    pass


@analyses_group.command('list')
def list_analyses():
    """
    List saved analyses

    Examples:
        compintel analyses list
    """
    try:
        service = build_service()
        analyses = service.get_analyses()

        if not analyses:
            click.echo("No analyses found.")
            click.echo("\nStart one with: compintel analyses start --competitor <name>")
            return

        click.echo(f"\n{'='*60}")
        click.echo(f"📊 Analyses ({len(analyses)})")
        click.echo(f"{'='*60}\n")

        for analysis in analyses:
            status = "✅" if analysis.status == "completed" else "⏳"
            click.echo(f"{status} {analysis.name or 'Untitled'}")
            click.echo(f"   ID: {analysis.id}")
            if analysis.session_id:
                click.echo(f"   Session: {analysis.session_id}")
            if analysis.completed_at:
                click.echo(f"   Completed: {analysis.completed_at:%Y-%m-%d %H:%M}")
            click.echo()

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@analyses_group.command('show')
@click.argument('analysis_id')
def show_analysis(analysis_id: str):
    """
    Show one analysis

    Examples:
        compintel analyses show 3f2c...
    """
    service = build_service()
    analysis = service.get_analysis_by_id(analysis_id)
    if not analysis:
        click.echo(f"❌ Analysis '{analysis_id}' not found", err=True)
        raise click.Abort()

    click.echo(f"\n{'='*60}")
    click.echo(f"📊 {analysis.name or 'Untitled'}")
    click.echo(f"{'='*60}\n")
    click.echo(f"ID: {analysis.id}")
    click.echo(f"Status: {analysis.status or 'unknown'}")
    if analysis.description:
        click.echo(f"Description: {analysis.description}")

    data = analysis.data
    if data.is_combined:
        click.echo("View: combined")
        if data.overall_confidence is not None:
            click.echo(f"Overall confidence: {data.overall_confidence:.2f}")
    else:
        click.echo("View: raw provider output")


@analyses_group.command('export')
@click.argument('analysis_id')
@click.option('--output', '-o', type=click.Path(dir_okay=False, path_type=Path), help='File to write (default: stdout)')
def export_analysis(analysis_id: str, output: Optional[Path]):
    """
    Export an analysis as JSON

    Examples:
        compintel analyses export 3f2c... -o analysis.json
    """
    service = build_service()
    try:
        document = service.export_analysis(analysis_id)
    except CompetitorAnalysisError as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()

    if output:
        output.write_bytes(document)
        click.echo(f"✅ Exported to {output}")
    else:
        click.echo(document.decode('utf-8'))


@analyses_group.command('delete')
@click.argument('analysis_id')
@click.confirmation_option(prompt='Delete this analysis?')
def delete_analysis(analysis_id: str):
    """
    Delete an analysis

    Examples:
        compintel analyses delete 3f2c... --yes
    """
    service = build_service()
    try:
        service.delete_analysis(analysis_id)
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
    click.echo(f"🗑️  Deleted analysis {analysis_id}")


@analyses_group.command('start')
@click.option('--competitor', '-c', 'competitors', multiple=True, required=True, help='Competitor name (repeatable)')
@click.option('--provider', '-p', 'providers', multiple=True, help='Provider to use (repeatable; default: all available)')
@click.option('--model', '-m', 'models', multiple=True, help='Model override as provider=model (repeatable)')
@click.option('--session', 'session_id', help='Session id (default: new uuid)')
def start_analysis(competitors: Tuple[str, ...], providers: Tuple[str, ...], models: Tuple[str, ...], session_id: Optional[str]):
    """
    Start a competitor analysis

    Examples:
        compintel analyses start -c "Acme Corp"
        compintel analyses start -c "Acme Corp" -c Globex -p openai -m openai=gpt-4o
    """
    model_map = _parse_models(models)
    session_id = session_id or str(uuid.uuid4())

    click.echo(f"🚀 Starting analysis {session_id} for {', '.join(competitors)}")

    service = build_service()
    try:
        service.start_analysis(session_id, list(competitors), list(providers), model_map)
    except CompetitorAnalysisError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.Abort()

    click.echo("✅ Analysis complete")
    click.echo(f"   Session: {session_id}")
    click.echo("   View with: compintel analyses list")
