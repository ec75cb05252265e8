from modules.flashcards.uploads import UploadedFile, MimeCategory, classify_uploads, split_name


def test_split_name_uses_last_extension():
    assert split_name('cat.mp3') == ('cat', '.mp3')
    assert split_name('ice.cream.PNG') == ('ice.cream', '.png')
    assert split_name('README') == ('README', '')
    assert split_name('.hidden') == ('.hidden', '')
    assert split_name('uploads/dir/dog.wav') == ('dog', '.wav')


def test_classify_by_declared_mime_keeps_order():
    files = [
        UploadedFile(display_name='b.mp3', mime_type='audio/mpeg', data=b'1'),
        UploadedFile(display_name='a.png', mime_type='image/png', data=b'2'),
        UploadedFile(display_name='a.mp3', mime_type='audio/mpeg', data=b'3'),
        UploadedFile(display_name='notes.txt', mime_type='text/plain', data=b'4'),
    ]
    audio, images, skipped = classify_uploads(files)
    assert [a.display_name for a in audio] == ['b.mp3', 'a.mp3']
    assert [i.display_name for i in images] == ['a.png']
    assert skipped == ['notes.txt']
    assert audio[0].mime_category is MimeCategory.AUDIO
    assert audio[0].base_name == 'b'
    assert images[0].content_type == 'image/png'


def test_classify_guesses_from_name_when_mime_missing():
    files = [
        UploadedFile(display_name='dog.wav', mime_type='application/octet-stream', data=b'1'),
        UploadedFile(display_name='dog.jpg', mime_type=None, data=b'2'),
        UploadedFile(display_name='mystery', mime_type=None, data=b'3'),
    ]
    audio, images, skipped = classify_uploads(files)
    assert [a.display_name for a in audio] == ['dog.wav']
    assert [i.display_name for i in images] == ['dog.jpg']
    assert skipped == ['mystery']


def test_mime_parameters_are_ignored():
    files = [UploadedFile(display_name='x.ogg', mime_type='audio/ogg; codecs=opus', data=b'1')]
    audio, _, _ = classify_uploads(files)
    assert audio[0].content_type == 'audio/ogg'
