"""Command-line interface for metergram.

Provides commands for:
- generate: Train a grammar from annotated MIDI files
- decode: Infer voices, beats and meter of a MIDI file
- inspect: Show the contents of a grammar file
- evaluate: Decode annotated files (leave-one-out) and report meter accuracy
"""

import logging
import time
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from . import __version__
from .core import BeatKind, DecoderConfig, HierarchyKind, InputFormatError, MetergramError, VoiceKind
from .grammar import Grammar
from .input import MidiLoader
from .joint import JointState
from .training import decode_input, evaluate_files, generate_grammar

app = typer.Typer(
    name="metergram",
    help="Joint voice separation, beat tracking and meter detection for MIDI",
    rich_markup_mode="markdown",
)
console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def midi_files(inputs: List[Path]) -> List[Path]:
    """Expand directories into the MIDI files under them."""
    files = []
    for path in inputs:
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob("*") if p.suffix.lower() in MidiLoader.SUPPORTED_FORMATS))
        else:
            files.append(path)
    return files


def build_config(
    beam_size: int,
    voice_beam_size: int,
    sub_beat_length: int,
    min_note_length: int,
    extend_notes: bool,
    congruence: bool,
    global_weight: float,
    lexicalize: bool,
    voice_kind: VoiceKind = VoiceKind.HMM,
    beat_kind: BeatKind = BeatKind.HMM,
    hierarchy_kind: HierarchyKind = HierarchyKind.LPCFG,
) -> DecoderConfig:
    try:
        return DecoderConfig(
            beam_size=beam_size,
            voice_beam_size=voice_beam_size,
            sub_beat_length=sub_beat_length,
            min_note_length=min_note_length,
            extend_notes=extend_notes,
            use_congruence=congruence,
            global_weight=global_weight,
            lexicalize=lexicalize,
            voice_kind=voice_kind,
            beat_kind=beat_kind,
            hierarchy_kind=hierarchy_kind,
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def load_grammar(path: Path) -> Grammar:
    try:
        return Grammar.load(path)
    except (FileNotFoundError, MetergramError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def generate(
    inputs: List[Path] = typer.Argument(..., help="MIDI files or directories"),
    output: Path = typer.Option(Path("grammar.lpcfg"), "-o", "--output", help="Output grammar file"),
    workers: int = typer.Option(1, "-j", "--workers", help="Worker processes"),
    min_note_length: int = typer.Option(100000, "--min-note-length", help="Minimum note length (us), -1 for none"),
    extend_notes: bool = typer.Option(True, "--extend-notes/--no-extend-notes", help="Extend notes to the next onset"),
    lexicalize: bool = typer.Option(True, "--lexicalize/--no-lexicalize", help="Condition on heads"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
):
    """Train a grammar from MIDI files annotated with a time signature."""
    setup_logging(verbose)
    config = build_config(1, 1, -1, min_note_length, extend_notes, True, 2.0 / 3.0, lexicalize)
    files = midi_files(inputs)
    if not files:
        console.print("[red]Error: No MIDI files found[/red]")
        raise typer.Exit(1)

    start = time.time()
    failed = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Generating grammar...", total=len(files))

        def on_file(path: Path, ok: bool) -> None:
            if not ok:
                failed.append(path)
            progress.advance(task)

        grammar = generate_grammar(files, config, workers=workers, on_file=on_file)

    grammar.save(output)
    console.print(
        f"[green]Grammar written to {output}[/green] "
        f"({len(files) - len(failed)} files, {len(grammar.trees)} bars, {time.time() - start:.1f}s)"
    )
    if failed:
        console.print(f"[yellow]Skipped {len(failed)} files[/yellow]")


@app.command()
def decode(
    input_file: Path = typer.Argument(..., help="Input MIDI file"),
    grammar_file: Optional[Path] = typer.Option(None, "-g", "--grammar", help="Grammar file"),
    beam_size: int = typer.Option(200, "-b", "--beam", help="Joint beam size"),
    voice_beam_size: int = typer.Option(25, "--voice-beam", help="Voice beam size"),
    sub_beat_length: int = typer.Option(-1, "--sub-beat-length", help="Tatums per sub-beat, -1 to search"),
    min_note_length: int = typer.Option(100000, "--min-note-length", help="Minimum note length (us), -1 for none"),
    extend_notes: bool = typer.Option(True, "--extend-notes/--no-extend-notes", help="Extend notes to the next onset"),
    congruence: bool = typer.Option(True, "--congruence/--no-congruence", help="Apply the rule of congruence"),
    global_weight: float = typer.Option(2.0 / 3.0, "--global-weight", help="Global vs. local grammar weight"),
    voice_kind: VoiceKind = typer.Option(VoiceKind.HMM, "--voice", help="Voice model"),
    beat_kind: BeatKind = typer.Option(BeatKind.HMM, "--beat", help="Beat model"),
    hierarchy_kind: HierarchyKind = typer.Option(HierarchyKind.LPCFG, "--hierarchy", help="Meter model"),
    top: int = typer.Option(1, "-n", "--top", help="Number of hypotheses to show"),
    json_output: bool = typer.Option(False, "--json", help="Output results as JSON"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
):
    """Infer the voices, beat grid and meter of a MIDI file."""
    setup_logging(verbose)

    grammar = None
    if hierarchy_kind == HierarchyKind.LPCFG:
        if grammar_file is None:
            console.print("[red]Error: --grammar is required for the lpcfg hierarchy[/red]")
            raise typer.Exit(1)
        grammar = load_grammar(grammar_file)
    config = build_config(
        beam_size,
        voice_beam_size,
        sub_beat_length,
        min_note_length,
        extend_notes,
        congruence,
        global_weight,
        grammar.lexicalize if grammar is not None else True,
        voice_kind,
        beat_kind,
        hierarchy_kind,
    )

    try:
        midi = MidiLoader().load(input_file)
    except (FileNotFoundError, InputFormatError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    results = decode_input(midi, grammar, config)
    if not results:
        console.print("[yellow]No output: every hypothesis was pruned[/yellow]")
        raise typer.Exit(1)

    if json_output:
        console.print_json(data=[_summary_dict(state) for state in results[:top]])
    else:
        _show_results_table(results[:top])


@app.command()
def inspect(
    grammar_file: Path = typer.Argument(..., help="Grammar file"),
):
    """Show the measures and count tables of a grammar."""
    grammar = load_grammar(grammar_file)

    console.print(f"[bold]Grammar:[/bold] {grammar_file}")
    console.print(f"  Lexicalized: {grammar.lexicalize}")
    console.print(f"  Trees: {len(grammar.trees)}")
    console.print(f"  Measures: {', '.join(str(m) for m in sorted(grammar.measures)) or 'none'}")

    table = Table(title="Count Tables")
    table.add_column("Table", style="cyan")
    table.add_column("Conditions", style="green")
    table.add_column("Observations", style="yellow")
    for name, counts in grammar.tracker.tables().items():
        observations = sum(sum(items.values()) for items in counts.values())
        table.add_row(name, str(len(counts)), str(observations))
    console.print(table)


@app.command()
def evaluate(
    inputs: List[Path] = typer.Argument(..., help="Annotated MIDI files or directories"),
    grammar_file: Path = typer.Option(..., "-g", "--grammar", help="Grammar file"),
    beam_size: int = typer.Option(200, "-b", "--beam", help="Joint beam size"),
    voice_beam_size: int = typer.Option(25, "--voice-beam", help="Voice beam size"),
    hold_out: bool = typer.Option(True, "--hold-out/--no-hold-out", help="Remove each file's bars while decoding it"),
    voice_kind: VoiceKind = typer.Option(VoiceKind.HMM, "--voice", help="Voice model"),
    beat_kind: BeatKind = typer.Option(BeatKind.HMM, "--beat", help="Beat model"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
):
    """Decode annotated files and report meter accuracy."""
    setup_logging(verbose)
    grammar = load_grammar(grammar_file)
    config = build_config(
        beam_size, voice_beam_size, -1, 100000, True, True, 2.0 / 3.0, grammar.lexicalize, voice_kind, beat_kind
    )
    files = midi_files(inputs)

    table = Table(title="Meter Evaluation")
    table.add_column("File", style="cyan")
    table.add_column("Truth", style="green")
    table.add_column("Guess", style="yellow")
    table.add_column("Correct")

    with Progress(SpinnerColumn(), TextColumn("{task.description}"), BarColumn(), console=console) as progress:
        task = progress.add_task("Evaluating...", total=len(files))

        def on_file(path: Path, evaluation) -> None:
            progress.advance(task)
            if evaluation is None:
                table.add_row(path.name, "-", "-", "[yellow]skipped[/yellow]")
                return
            guess = evaluation.guess
            table.add_row(
                path.name,
                _meter_string(evaluation.truth),
                _meter_string(guess) if guess is not None else "none",
                "[green]yes[/green]" if evaluation.is_correct else "[red]no[/red]",
            )

        evaluations = evaluate_files(files, grammar, config, hold_out=hold_out, on_file=on_file)

    console.print(table)
    if evaluations:
        correct = sum(e.is_correct for e in evaluations)
        measures = sum(e.measure_correct for e in evaluations)
        console.print(
            f"[bold]Meter accuracy:[/bold] {correct}/{len(evaluations)} "
            f"({100.0 * correct / len(evaluations):.1f}%), measure only {measures}/{len(evaluations)}"
        )


@app.command()
def version():
    """Show the version."""
    console.print(f"metergram {__version__}")


def _meter_string(meter) -> str:
    return f"{meter.measure} length={meter.sub_beat_length} anacrusis={meter.anacrusis}"


def _summary_dict(state: JointState) -> dict:
    summary = state.summary()
    return {
        "score": summary.score,
        "measure": str(summary.measure) if summary.measure is not None else None,
        "sub_beat_length": summary.sub_beat_length,
        "anacrusis": summary.anacrusis,
        "voices": summary.num_voices,
        "tempo": summary.tempo,
        "tatums": summary.tatum_times,
        "beats": summary.beat_times,
        "downbeats": summary.downbeat_times,
    }


def _show_results_table(results: List[JointState]):
    """Display decoded hypotheses in a table."""
    table = Table(title="Decoded Hypotheses")
    table.add_column("#", style="dim")
    table.add_column("Measure", style="cyan")
    table.add_column("Sub-beat length", style="green")
    table.add_column("Anacrusis", style="green")
    table.add_column("Voices", style="yellow")
    table.add_column("Tempo (BPM)", style="yellow")
    table.add_column("Score", style="magenta")

    for rank, state in enumerate(results, 1):
        summary = state.summary()
        tempo = f"{summary.tempo:.1f}" if summary.tempo else "-"
        table.add_row(
            str(rank),
            str(summary.measure),
            str(summary.sub_beat_length),
            str(summary.anacrusis),
            str(summary.num_voices),
            tempo,
            f"{summary.score:.2f}",
        )

    console.print(table)


def main():
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
