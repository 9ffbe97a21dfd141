# classification datasets: tab-separated tag files or one folder per class
import os
from collections import Counter
from PIL import Image
from sklearn.model_selection import train_test_split
from torch.utils.data import Dataset, DataLoader
from torchvision import transforms


IMAGE_EXTS = ('.png', '.jpg', '.jpeg', '.bmp')
IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]


def get_transforms(img_size=224, augment=False):
    """Return (train_transform, eval_transform)

    Args:
        img_size: Target image size (square)
        augment: Enable light geometric/color augmentations for training
    """
    eval_transform = transforms.Compose([
        transforms.Resize((img_size, img_size)),
        transforms.ToTensor(),
        transforms.Normalize(mean=IMAGENET_MEAN, std=IMAGENET_STD)
    ])

    if not augment:
        return eval_transform, eval_transform

    train_transform = transforms.Compose([
        transforms.RandomResizedCrop((img_size, img_size), scale=(0.8, 1.0)),
        transforms.RandomHorizontalFlip(),
        transforms.ColorJitter(brightness=0.15, contrast=0.15),
        transforms.ToTensor(),
        transforms.Normalize(mean=IMAGENET_MEAN, std=IMAGENET_STD)
    ])
    return train_transform, eval_transform


def load_tag_file(tsv_path, images_dir):
    """Read a headerless `image<TAB>label` file into a list of (path, label).

    Relative image names are resolved against images_dir. Blank lines are skipped.
    """
    if not os.path.exists(tsv_path):
        raise FileNotFoundError(f'Tag file not found: {tsv_path}')

    samples = []
    with open(tsv_path, 'r', encoding='utf8') as f:
        for lineno, line in enumerate(f, start=1):
            line = line.rstrip('\r\n')
            if not line.strip():
                continue
            parts = line.split('\t')
            if len(parts) < 2 or not parts[1].strip():
                raise ValueError(f'{tsv_path}:{lineno}: expected "image<TAB>label", got {line!r}')
            name, label = parts[0].strip(), parts[1].strip()
            path = name if os.path.isabs(name) else os.path.join(images_dir, name)
            samples.append((path, label))
    return samples


def scan_class_folders(root, min_count=1):
    """Collect (path, label) pairs from a folder per class.

    Directory structure:
        root/class_x/xxx.png
        root/class_y/123.jpg
    """
    samples = []
    for entry in sorted(os.listdir(root)):
        p = os.path.join(root, entry)
        if os.path.isdir(p):
            imgs = [f for f in os.listdir(p) if f.lower().endswith(IMAGE_EXTS)]
            if len(imgs) < min_count:
                # skip classes with fewer than min_count images
                continue
            for fname in sorted(imgs):
                samples.append((os.path.join(p, fname), entry))

    if not samples:
        raise RuntimeError(f'No class subfolders found in {root}')
    return samples


def build_class_index(labels):
    """Sorted unique labels; a label's position is its class index."""
    return sorted(set(labels))


def filter_known_labels(samples, classes, name='test'):
    known = set(classes)
    kept = [s for s in samples if s[1] in known]
    dropped = sorted({s[1] for s in samples if s[1] not in known})
    if dropped:
        print(f'Warning: dropping {len(samples) - len(kept)} {name} samples with labels unseen in training: {", ".join(dropped)}')
    return kept


def summarize_labels(samples):
    """Return {label: count} sorted by label."""
    counts = Counter(label for _, label in samples)
    return dict(sorted(counts.items()))


def scan_data(samples):
    """Print per-class image counts and flag classes too small to train on."""
    counts = summarize_labels(samples)
    if not counts:
        print('No labeled images found')
        return counts
    print(f'Found {len(counts)} classes and {sum(counts.values())} images')
    for k, v in counts.items():
        note = ''
        if v < 2:
            note = '  <-- WARNING: <2 images (stratified split will fail)'
        elif v < 10:
            note = '  <-- few images (consider augmenting)'
        print(f'  {k}: {v}{note}')
    return counts


class ImageDataset(Dataset):
    """(path, label) samples decoded as RGB; yields (tensor, class_index, path)."""

    def __init__(self, samples, classes, transform=None):
        self.samples = samples
        self.class_to_idx = {c: i for i, c in enumerate(classes)}
        self.transform = transform

    def __len__(self):
        return len(self.samples)

    def __getitem__(self, idx):
        path, label = self.samples[idx]
        with Image.open(path) as img:
            img = img.convert('RGB')
        if self.transform:
            img = self.transform(img)
        return img, self.class_to_idx[label], path


def _loaders(train_samples, test_samples, classes, batch_size, img_size, augment, num_workers, **dl_kwargs):
    train_transform, eval_transform = get_transforms(img_size=img_size, augment=augment)
    train_ds = ImageDataset(train_samples, classes, transform=train_transform)
    test_ds = ImageDataset(test_samples, classes, transform=eval_transform)

    train_loader = DataLoader(train_ds, batch_size=batch_size, shuffle=False, num_workers=num_workers, **dl_kwargs)
    test_loader = DataLoader(test_ds, batch_size=batch_size, shuffle=False, num_workers=num_workers, **dl_kwargs)
    return train_loader, test_loader


def make_tag_dataloaders(images_dir, train_tags, test_tags, batch_size=32, img_size=224, augment=False, num_workers=0, **dl_kwargs):
    """Build train/test loaders from two tag files.

    Returns: train_loader, test_loader, class_names
    """
    train_samples = load_tag_file(train_tags, images_dir)
    if not train_samples:
        raise RuntimeError(f'No training samples in {train_tags}')
    classes = build_class_index(label for _, label in train_samples)
    test_samples = filter_known_labels(load_tag_file(test_tags, images_dir), classes)

    train_loader, test_loader = _loaders(train_samples, test_samples, classes, batch_size, img_size, augment, num_workers, **dl_kwargs)
    return train_loader, test_loader, classes


def make_folder_dataloaders(root, batch_size=32, img_size=224, val_split=0.2, random_state=42, augment=False, min_count=1, num_workers=0, **dl_kwargs):
    """Scan root folder for classes, build train/val loaders with a stratified split.

    Returns: train_loader, val_loader, class_names
    """
    samples = scan_class_folders(root, min_count=min_count)
    classes = build_class_index(label for _, label in samples)

    train_samples, val_samples = train_test_split(
        samples, test_size=val_split, stratify=[label for _, label in samples], random_state=random_state
    )

    train_loader, val_loader = _loaders(train_samples, val_samples, classes, batch_size, img_size, augment, num_workers, **dl_kwargs)
    return train_loader, val_loader, classes
