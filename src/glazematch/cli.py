"""
Command-line interface for the glaze color matcher.
"""

import json
import logging
import sys

import click

from . import __version__
from .color_math import lab_to_hex
from .components import build_component_model
from .config import Config
from .dataset import FiringCondition, ModelManager, load_dataset_csv
from .errors import EmptyDatasetError, GlazeMatchError
from .interpolator import predict_lab_from_recipe
from .matcher import ColorMatcher

CLI_ERRORS = (GlazeMatchError, ValueError, OSError)


def _load(dataset_path, config_path, cone, atmosphere):
    """Read config and dataset, then load the requested firing partition."""
    config = Config.from_yaml(config_path, path=dataset_path, cone=cone, atmosphere=atmosphere)
    dataset = load_dataset_csv(config.dataset.path, max_pct=config.recipe.max_pct)
    condition = FiringCondition(config.dataset.cone, config.dataset.atmosphere)
    if condition not in dataset:
        available = ", ".join(str(c) for c in dataset.conditions()) or "none"
        raise EmptyDatasetError(f"No test tiles fired at {condition} (available: {available})")
    manager = ModelManager(config)
    manager.load_from_dataset(dataset, condition)
    return config, manager


def _parse_recipe(text: str) -> dict:
    """Parse ``code=pct,code=pct`` into a dict."""
    components = {}
    for part in text.split(','):
        part = part.strip()
        if not part:
            continue
        if '=' not in part:
            raise ValueError(f"Recipe entry '{part}' must look like code=pct")
        code, pct = part.split('=', 1)
        components[code.strip()] = float(pct)
    return components


def _format_components(components) -> str:
    if not components:
        return "base glaze (no stain)"
    return ", ".join(f"{c.name} {c.pct:g}%" for c in components)


def _echo_match(label, match):
    click.echo(f"{label}: {match.predicted_hex}  ΔE {match.delta_e:.2f}  confidence {match.confidence:.0%}")
    click.echo(f"  Recipe: {_format_components(match.components)}")
    click.echo(f"  {match.explanation}")


source_options = [
    click.option('--dataset', '-d', type=click.Path(exists=True, dir_okay=False),
                 help='Test tile CSV (overrides dataset.path in config)'),
    click.option('--config', '-c', 'config_path', default='glazematch.yaml', help='Configuration file path'),
]

common_options = source_options + [
    click.option('--cone', type=int, help='Firing cone (overrides config)'),
    click.option('--atmosphere', '-a', type=click.Choice(['oxidation', 'reduction']),
                 help='Kiln atmosphere (overrides config)'),
]


def _with_options(options):
    def decorator(func):
        for option in reversed(options):
            func = option(func)
        return func
    return decorator


with_source_options = _with_options(source_options)
with_common_options = _with_options(common_options)


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose):
    """
    Glaze Color Matcher

    Find stain recipes for a target glaze color from fired test tiles.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@with_source_options
def conditions(dataset, config_path):
    """List the firing conditions in the dataset and how many tiles each has."""
    try:
        config = Config.from_yaml(config_path, path=dataset)
        data = load_dataset_csv(config.dataset.path, max_pct=config.recipe.max_pct)
        click.echo(f"Stains: {', '.join(data.stain_codes)}")
        for condition in data.conditions():
            click.echo(f"  {condition}: {len(data.points_for(condition))} tiles")
    except CLI_ERRORS as e:
        click.echo(f"[X] Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@with_common_options
@click.argument('target_hex')
@click.option('--report', '-r', is_flag=True, help='Show the neighbors and stain contributions behind the match')
@click.option('--json', 'as_json', is_flag=True, help='Emit JSON instead of text')
def match(dataset, config_path, cone, atmosphere, target_hex, report, as_json):
    """
    Match TARGET_HEX (e.g. '#e4533d') against the fired test tiles.
    """
    try:
        config, manager = _load(dataset, config_path, cone, atmosphere)
        matcher = ColorMatcher(config)
        model = manager.snapshot()

        if report:
            details = matcher.explain(model, target_hex)
            if as_json:
                click.echo(json.dumps(details.to_dict(), indent=2, ensure_ascii=False))
                return
            click.echo(f"Target {details.target_hex} at {details.condition}")
            click.echo(f"Interpolated recipe: {_format_components(details.interpolated_recipe)}")
            click.echo(f"k-NN prediction: {details.knn_hex}")
            if details.component_hex:
                click.echo(f"Component estimate: {details.component_hex}")
            click.echo("Nearest tiles:")
            for n in details.neighbors:
                click.echo(f"  {n.hex}  ΔE {n.delta_e:5.2f}  weight {n.weight:.3f}  {_format_components(n.components)}")
            return

        result = matcher.match_hex(model, target_hex)
        if as_json:
            click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
            return

        click.echo("=" * 60)
        click.echo(f"Target {result.target_hex} at {result.condition} ({model.point_count} tiles)")
        click.echo("=" * 60)
        _echo_match("Primary", result.primary)
        for i, alt in enumerate(result.alternatives, start=1):
            _echo_match(f"Alternative {i}", alt)
        if result.out_of_gamut:
            click.echo(f"[WARN] Out of gamut: {result.gamut_explanation}")

    except CLI_ERRORS as e:
        click.echo(f"[X] Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@with_common_options
@click.option('--recipe', required=True, help="Stain percentages by code, e.g. '6026=3,6450=5'")
def predict(dataset, config_path, cone, atmosphere, recipe):
    """Predict the fired color of a recipe."""
    try:
        config, manager = _load(dataset, config_path, cone, atmosphere)
        model = manager.snapshot()
        vector = model.recipe_from_components(_parse_recipe(recipe))

        m = config.matching
        prediction = predict_lab_from_recipe(model, vector, k=m.forward_k, epsilon=m.epsilon)
        L, a, b = prediction.lab
        source = "tested tile" if prediction.exact else f"{len(prediction.neighbors)} nearest tiles"
        click.echo(f"Predicted: {lab_to_hex(prediction.lab)}  Lab({L:.1f}, {a:.1f}, {b:.1f})  from {source}")

        component_lab = build_component_model(model, config.recipe.base_lab).predict_lab(vector)
        if component_lab is not None:
            click.echo(f"Component estimate: {lab_to_hex(component_lab)}")
    except CLI_ERRORS as e:
        click.echo(f"[X] Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option('--output', '-o', default='glazematch.yaml', help='Output configuration file path')
def init_config(output):
    """Create a default configuration file."""
    try:
        config = Config()
        config.save_yaml(output)
        click.echo(f"[OK] Configuration written to {output}")
    except OSError as e:
        click.echo(f"[X] Error creating configuration: {e}", err=True)
        sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
