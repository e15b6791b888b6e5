import logging

import click
import requests

from livequiz.models import PHASE_WAITING, PHASE_VOTING, PHASE_RESULT, PHASE_RANKING
from livequiz.services.quiz.errors import InvalidDisplayName
from .identity import IdentityStore
from .participant import ParticipantClient


def _render_state(client, snapshot):
    phase = snapshot.get('phase')
    question = snapshot.get('question') or {}
    if phase == PHASE_WAITING:
        click.echo('\nWaiting for the host to start...')
    elif phase == PHASE_VOTING and question:
        click.echo(f"\nQ{question.get('position', '')}: {question.get('prompt')}")
        for i, option in enumerate(question.get('options') or [], start=1):
            click.echo(f'  {i}) {option}')
        click.echo(f'{client.remaining_seconds():.0f}s left. Type 1-4 and press Enter.')
    elif phase == PHASE_RESULT and question:
        correct = question.get('correct_option')
        answer = client.answer_for(snapshot.get('active_question_id'))
        if correct:
            click.echo(f"\nCorrect answer: {correct}) {question['options'][correct - 1]}")
        if answer is None:
            click.echo('You did not answer this one.')
        elif answer.selected_option == correct:
            # Local points are only known when the answer was visible while voting
            click.echo(f'Right! +{answer.points} points' if answer.is_correct else 'Right!')
        else:
            click.echo('Not this time.')
    elif phase == PHASE_RANKING:
        click.echo('\nRanking:')


def _render_ranking(entries):
    for entry in entries:
        click.echo(f"  {entry['rank']:>2}. {entry['name']:<20} {entry['score']}")


@click.command()
@click.option('--url', default='http://localhost:5000', envvar='LIVEQUIZ_URL', show_default=True,
              help='Quiz server address.')
@click.option('--name', help='Display name; asked for when this device is not registered yet.')
@click.option('--identity-file', type=click.Path(dir_okay=False), default=None,
              help='Where this device keeps its participant id.')
@click.option('-v', '--verbose', is_flag=True)
def play(url, name, identity_file, verbose):
    """Join the live quiz as a participant."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    store = IdentityStore(identity_file)
    client = ParticipantClient(url, store, on_ranking=_render_ranking)
    client.on_state = lambda snapshot: _render_state(client, snapshot)
    client.on_cleared = lambda: click.echo('\nThe host removed all participants. Run play again to rejoin.')

    if name is None and store.get() is None:
        name = click.prompt('Display name')
    try:
        identity = client.register(name)
    except InvalidDisplayName as exc:
        raise click.BadParameter(exc.message, param_hint='--name')
    except requests.RequestException as exc:
        raise click.ClickException(f'Could not join: {exc}')
    click.echo(f'Welcome, {identity.name}!')

    client.connect()
    try:
        while client.identity is not None:
            choice = click.prompt('', default='', show_default=False, prompt_suffix='').strip()
            if choice not in ('1', '2', '3', '4'):
                continue
            event = client.submit_answer(int(choice))
            if event is None:
                click.echo('Answer not accepted (already answered, time is up, or not voting).')
            else:
                click.echo('Answer sent. Wait for the result...')
    except (KeyboardInterrupt, click.Abort):
        pass
    finally:
        client.close()
