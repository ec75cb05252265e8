from modules.flashcards.uploads import UploadedFile, classify_uploads
from modules.flashcards.pair_matcher import match_pairs, NO_MATCH_REASON


def _items(*names):
    files = []
    for n in names:
        mime = 'audio/mpeg' if n.endswith('.mp3') else 'image/png'
        files.append(UploadedFile(display_name=n, mime_type=mime, data=n.encode()))
    audio, images, _ = classify_uploads(files)
    return audio, images


def test_pairs_by_exact_base_name():
    audio, images = _items('cat.mp3', 'dog.mp3', 'dog.png', 'cat.jpg', 'bird.png')
    pairs, unmatched, reused = match_pairs(audio, images)
    assert [(p.audio_item.display_name, p.correct_image.display_name) for p in pairs] == [
        ('cat.mp3', 'cat.jpg'),
        ('dog.mp3', 'dog.png'),
    ]
    assert unmatched == []
    assert reused == []


def test_unmatched_audio_is_reported():
    audio, images = _items('a.mp3', 'b.png')
    pairs, unmatched, _ = match_pairs(audio, images)
    assert pairs == []
    assert [u.audio_item.display_name for u in unmatched] == ['a.mp3']
    assert unmatched[0].reason == NO_MATCH_REASON


def test_match_is_case_sensitive_and_not_percent_decoded():
    audio, images = _items('Cat.mp3', 'caf%C3%A9.mp3', 'cat.png', 'café.png')
    pairs, unmatched, _ = match_pairs(audio, images)
    assert pairs == []
    assert len(unmatched) == 2


def test_first_image_wins_for_duplicate_names():
    files = [
        UploadedFile(display_name='sun.mp3', mime_type='audio/mpeg', data=b'a'),
        UploadedFile(display_name='sun.png', mime_type='image/png', data=b'first'),
        UploadedFile(display_name='sun.jpg', mime_type='image/jpeg', data=b'second'),
    ]
    audio, images, _ = classify_uploads(files)
    pairs, _, _ = match_pairs(audio, images)
    assert pairs[0].correct_image.data == b'first'


def test_second_audio_for_same_image_is_returned_as_reused():
    files = [
        UploadedFile(display_name='cat.mp3', mime_type='audio/mpeg', data=b'1'),
        UploadedFile(display_name='cat.wav', mime_type='audio/wav', data=b'2'),
        UploadedFile(display_name='cat.png', mime_type='image/png', data=b'3'),
    ]
    audio, images, _ = classify_uploads(files)
    pairs, unmatched, reused = match_pairs(audio, images)
    assert [p.audio_item.display_name for p in pairs] == ['cat.mp3']
    assert unmatched == []
    assert [(p.audio_item.display_name, p.correct_image.display_name) for p in reused] == [('cat.wav', 'cat.png')]
