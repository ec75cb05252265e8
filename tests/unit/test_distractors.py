import random

import pytest

from modules.flashcards.distractors import DistractorPool, build_answer_set
from modules.flashcards.errors import InsufficientDistractorsError
from modules.flashcards.uploads import classify_uploads


@pytest.fixture
def images(make_upload):
    _, imgs, _ = classify_uploads([make_upload(f'img{i}.png', data=b'x') for i in range(6)])
    return imgs


def test_reserved_images_are_never_offered(images):
    pool = DistractorPool(images, reserved_base_names={'img0', 'img1'})
    assert pool.available() == 4
    chosen = pool.claim(4, random.Random(1))
    assert {c.base_name for c in chosen} == {'img2', 'img3', 'img4', 'img5'}


def test_claims_do_not_overlap(images):
    pool = DistractorPool(images)
    first = pool.claim(3, random.Random(0))
    second = pool.claim(3, random.Random(0))
    assert not {id(i) for i in first} & {id(i) for i in second}
    with pytest.raises(InsufficientDistractorsError):
        pool.claim(1)


def test_failed_claim_takes_nothing(images):
    pool = DistractorPool(images)
    with pytest.raises(InsufficientDistractorsError):
        pool.claim(7)
    assert pool.available() == 6


def test_release_returns_claims_but_not_corrupt(images):
    pool = DistractorPool(images)
    chosen = pool.claim(3, random.Random(2))
    pool.mark_corrupt(chosen[0])
    pool.release(chosen)
    assert pool.available() == 5


def test_answer_set_positions_cover_every_slot():
    rng = random.Random(7)
    seen = set()
    for _ in range(200):
        answer = build_answer_set('correct', ['a', 'b', 'c'], rng)
        assert len(answer.images) == 4
        assert answer.images[answer.correct_index] == 'correct'
        assert sorted(x for x in answer.images if x != 'correct') == ['a', 'b', 'c']
        seen.add(answer.correct_index)
    assert seen == {0, 1, 2, 3}
