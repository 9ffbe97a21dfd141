import csv
import os

import pytest
from PIL import Image

from imageclassifier.classification import infer
from imageclassifier.classification.infer import (
    classify_single_image,
    interactive_loop,
    load_checkpoint,
    predict_batch,
    predict_image,
    resolve_image_code,
)
from imageclassifier.classification.model import EmbeddingClassifier
from imageclassifier.utils import save_checkpoint


@pytest.fixture
def checkpoint(tmp_path, tiny_dataset):
    model = EmbeddingClassifier(num_classes=2, weights=None, feature_layer='pool')
    path = tmp_path / 'ckpt' / 'best.pth'
    save_checkpoint({'epoch': 1, 'model_state': model.state_dict(), 'classes': tiny_dataset['classes'],
                     'img_size': 32, 'feature_layer': 'pool'}, str(path))
    return str(path)


def scripted_input(*answers):
    it = iter(answers)

    def fake_input(prompt=''):
        try:
            return next(it)
        except StopIteration:
            raise EOFError
    return fake_input


def test_load_checkpoint_restores_metadata(checkpoint):
    model, classes, img_size = load_checkpoint(checkpoint)
    assert classes == ['dark', 'light']
    assert img_size == 32
    assert model.feature_layer == 'pool'
    assert not model.training


def test_load_checkpoint_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_checkpoint(str(tmp_path / 'nope.pth'))


def test_predict_image_topk(checkpoint, tiny_dataset):
    model, classes, img_size = load_checkpoint(checkpoint)
    img = os.path.join(tiny_dataset['images'], 'dark0.jpg')
    preds = predict_image(model, classes, img, topk=5, img_size=img_size)
    assert len(preds) == 2
    assert {label for label, _ in preds} == set(classes)
    assert sum(p for _, p in preds) == pytest.approx(1.0, abs=1e-5)
    assert preds[0][1] >= preds[1][1]


def test_resolve_image_code(tiny_dataset):
    images = tiny_dataset['images']
    assert resolve_image_code(images, 'dark0') == os.path.join(images, 'dark0.jpg')
    assert resolve_image_code(images, '  light1 ') == os.path.join(images, 'light1.jpg')
    assert resolve_image_code(images, 'toaster3') is None
    assert resolve_image_code(images, '') is None


def test_classify_single_image_prints_table_and_art(checkpoint, tiny_dataset, mocker, capsys):
    model, classes, img_size = load_checkpoint(checkpoint)
    mocker.patch('imageclassifier.ascii.renderer.terminal_size', return_value=(12, 12))
    img = os.path.join(tiny_dataset['images'], 'light0.jpg')
    label, score = classify_single_image(model, classes, img, img_size=img_size)
    out = capsys.readouterr().out
    assert label in classes
    assert 'Individual Image Prediction:' in out
    assert 'light0.jpg' in out
    assert f'{score:.4f}' in out
    # lightness ~0.96 -> floor(0.96 * 5) = 4 -> '='
    assert '====\n====\n' in out


def test_ascii_failure_does_not_abort_prediction(checkpoint, tiny_dataset, mocker, capsys):
    model, classes, img_size = load_checkpoint(checkpoint)
    mocker.patch.object(infer, 'image_to_ascii', side_effect=infer.AsciiArtError('boom'))
    img = os.path.join(tiny_dataset['images'], 'dark0.jpg')
    assert classify_single_image(model, classes, img, img_size=img_size) is not None
    assert 'Error displaying image: boom' in capsys.readouterr().out


def test_interactive_loop_handles_codes_until_exit(checkpoint, tiny_dataset, mocker, capsys):
    model, classes, img_size = load_checkpoint(checkpoint)
    classify = mocker.patch.object(infer, 'classify_single_image', return_value=('dark', 0.9))
    interactive_loop(model, classes, tiny_dataset['images'], img_size=img_size,
                     input_fn=scripted_input('toaster3', 'dark0', 'EXIT', 'light0'))
    out = capsys.readouterr().out
    assert "Enter 'exit' to quit." in out
    assert 'Image not found for code: toaster3' in out
    assert classify.call_count == 1
    assert classify.call_args.args[2] == os.path.join(tiny_dataset['images'], 'dark0.jpg')


def test_interactive_loop_reports_errors_and_continues(checkpoint, tiny_dataset, mocker, capsys):
    model, classes, img_size = load_checkpoint(checkpoint)
    classify = mocker.patch.object(infer, 'classify_single_image',
                                   side_effect=[OSError('cannot identify image file'), ('light', 0.8)])
    interactive_loop(model, classes, tiny_dataset['images'],
                     input_fn=scripted_input('dark0', 'light0'))
    out = capsys.readouterr().out
    assert 'cannot identify image file' in out
    assert classify.call_count == 2


def test_interactive_loop_classifies_real_image(checkpoint, tiny_dataset, capsys):
    model, classes, img_size = load_checkpoint(checkpoint)
    interactive_loop(model, classes, tiny_dataset['images'], img_size=img_size, ascii_art=False,
                     input_fn=scripted_input('light2', 'exit'))
    out = capsys.readouterr().out
    assert 'Individual Image Prediction:' in out
    assert 'light2.jpg' in out


def test_predict_batch_writes_outputs(checkpoint, tiny_dataset, tmp_path):
    model, classes, img_size = load_checkpoint(checkpoint)
    paths = infer.collect_image_paths(tiny_dataset['images'])
    assert len(paths) == 8
    out_dir = tmp_path / 'preds'
    csv_out = predict_batch(model, classes, paths[:2], str(out_dir), topk=3, img_size=img_size, compile_inferred=True)

    lines = (out_dir / 'dark0.txt').read_text().strip().split('\n')
    assert len(lines) == 2
    assert lines[0].split('\t')[0] in classes

    with open(csv_out, newline='') as f:
        rows = list(csv.reader(f))
    assert rows[0] == ['image_path', 'label_1', 'prob_1', 'label_2', 'prob_2']
    assert len(rows) == 3


def test_interactive_loop_survives_oversized_image(checkpoint, tiny_dataset, monkeypatch, capsys):
    model, classes, img_size = load_checkpoint(checkpoint)
    monkeypatch.setattr(Image, 'MAX_IMAGE_PIXELS', 10)
    interactive_loop(model, classes, tiny_dataset['images'], img_size=img_size,
                     input_fn=scripted_input('dark0', 'toaster3', 'exit'))
    out = capsys.readouterr().out
    assert f"Error classifying {os.path.join(tiny_dataset['images'], 'dark0.jpg')}" in out
    assert 'Image not found for code: toaster3' in out


def test_interactive_loop_reports_ascii_errors(checkpoint, tiny_dataset, mocker, capsys):
    model, classes, img_size = load_checkpoint(checkpoint)
    mocker.patch.object(infer, 'classify_single_image', side_effect=[infer.AsciiArtError('bad ramp'), ('dark', 0.7)])
    interactive_loop(model, classes, tiny_dataset['images'], input_fn=scripted_input('dark0', 'dark1'))
    assert 'bad ramp' in capsys.readouterr().out


@pytest.mark.parametrize('flag', ['--step-x', '--step-y'])
def test_main_rejects_non_positive_steps(flag, mocker):
    load = mocker.patch.object(infer, 'load_checkpoint')
    with pytest.raises(SystemExit):
        infer.main([flag, '0'])
    load.assert_not_called()
