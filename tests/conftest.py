import pytest
from PIL import Image


COLORS = {
    'dark': (10, 10, 10),
    'light': (245, 245, 245),
}


@pytest.fixture
def tiny_dataset(tmp_path):
    """Two visually distinct classes written as jpgs plus train/test tag files."""
    images = tmp_path / 'images'
    images.mkdir()
    train_rows, test_rows = [], []
    for label, color in COLORS.items():
        for i in range(4):
            name = f'{label}{i}.jpg'
            Image.new('RGB', (40, 40), color).save(images / name)
            (test_rows if i == 3 else train_rows).append(f'{name}\t{label}')
    train_tags = images / 'tags.tsv'
    test_tags = images / 'test-tags.tsv'
    train_tags.write_text('\n'.join(train_rows) + '\n')
    test_tags.write_text('\n'.join(test_rows) + '\n')
    return {
        'images': str(images),
        'train_tags': str(train_tags),
        'test_tags': str(test_tags),
        'classes': sorted(COLORS),
    }


@pytest.fixture
def class_folders(tmp_path):
    root = tmp_path / 'folders'
    for label, color in COLORS.items():
        d = root / label
        d.mkdir(parents=True)
        for i in range(5):
            Image.new('RGB', (16, 16), color).save(d / f'{i}.png')
    (root / 'notes.txt').write_text('not a class')
    return str(root)
