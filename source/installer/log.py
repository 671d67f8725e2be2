import click


def title(msg: str) -> None:
    click.secho(f"==> {msg}", fg="cyan", bold=True)


def step(msg: str) -> None:
    click.secho(f"\n==> {msg}", fg="cyan", bold=True)


def info(msg: str) -> None:
    click.secho(f"  -> {msg}", fg="green")


def warn(msg: str) -> None:
    click.secho(f"  -> WARNING: {msg}", fg="yellow")


def error(msg: str) -> None:
    click.secho(f"ERROR: {msg}", fg="red", bold=True)


def command(args: list[str]) -> None:
    click.echo(f"  -> Running: {' '.join(args)}")


def panic(msg: str) -> None:
    click.secho(f"\n==> PANIC: {msg}", fg="red", bold=True)
