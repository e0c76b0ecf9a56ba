"""Command-line entry point: classify one image and print the result."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
from pydantic import ValidationError

from myrecognition.config import get_settings
from myrecognition.ml.image_classifier import create_classifier
from myrecognition.ml.image_loader import load_image

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

DEFAULT_PROG_NAME = "my-recognition"


@click.command(context_settings={"ignore_unknown_options": True, "allow_extra_args": True})
@click.argument("filename", required=False)
@click.pass_context
def cli(ctx: click.Context, filename: str | None) -> int:
    """Classify an image with a pretrained ImageNet network."""
    prog = ctx.info_name or DEFAULT_PROG_NAME

    if filename is None:
        click.echo(f"{prog}:  expected image filename as argument")
        click.echo(f"example usage:   ./{prog} my_image.jpg")
        return 0

    try:
        settings = get_settings()
    except ValidationError as exc:
        click.echo(f"invalid configuration: {exc.error_count()} bad MYRECOGNITION_* setting(s)")
        for error in exc.errors():
            click.echo(f"  {'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}")
        return 0

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    image = load_image(filename, max_pixels=settings.max_image_pixels)
    if image is None:
        click.echo(f"failed to load image '{filename}'")
        return 0

    with image:
        net = create_classifier(settings.architecture, settings)
        if net is None:
            click.echo("failed to load image recognition network")
            return 0

        try:
            class_index, confidence = net.classify(image.device, image.width, image.height)

            if class_index >= 0:
                class_desc = net.get_class_desc(class_index)
                click.echo(
                    f"image is recognized as '{class_desc}' (class #{class_index}) "
                    f"with {confidence * 100.0:f}% confidence"
                )
            else:
                click.echo("failed to classify image")
        finally:
            net.close()

    return 0


def run(argv: Sequence[str] | None = None) -> int:
    """Run the CLI with ``argv`` (program name first) and return the exit code."""
    argv = list(sys.argv if argv is None else argv)
    prog = Path(argv[0]).name if argv else DEFAULT_PROG_NAME
    result: int = cli.main(args=argv[1:], prog_name=prog, standalone_mode=False)
    return result


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
