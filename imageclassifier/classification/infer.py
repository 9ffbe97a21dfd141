import os
import csv
import argparse
from PIL import Image
import torch
from imageclassifier.ascii.renderer import (
    AsciiArtError, DEFAULT_RAMP, DEFAULT_STEP_X, DEFAULT_STEP_Y, image_to_ascii,
)
from imageclassifier.classification.dataset import get_transforms, IMAGE_EXTS
from imageclassifier.classification.model import EmbeddingClassifier
from imageclassifier.shared.console import format_table, format_score
from imageclassifier.shared.train_args import DEFAULT_CHECKPOINT, DEFAULT_IMAGES_DIR
from imageclassifier.utils import load_checkpoint as read_checkpoint, select_device


EXIT_COMMAND = 'exit'
PROMPT = 'Enter the image name to predict...'


def load_checkpoint(path, device='cpu'):
    """Rebuild the classifier saved by training; returns (model, classes, img_size)."""
    ckpt = read_checkpoint(path, map_location=device)
    classes = ckpt.get('classes')
    if not classes:
        raise ValueError(f'Checkpoint {path} has no class names')
    model = EmbeddingClassifier(num_classes=len(classes), weights=None,
                                feature_layer=ckpt.get('feature_layer', 'logits'))
    model.load_state_dict(ckpt['model_state'])
    model.to(device)
    model.eval()
    return model, classes, ckpt.get('img_size', 224)


def predict_image(model, classes, img_path, device='cpu', topk=3, img_size=224):
    """Return the top-k (label, probability) pairs for one image file."""
    _, transform = get_transforms(img_size=img_size)
    with Image.open(img_path) as img:
        img = img.convert('RGB')
    x = transform(img).unsqueeze(0).to(device)
    model.eval()
    with torch.no_grad():
        out = model(x)
        probs = torch.softmax(out, dim=1)[0]
        topk_probs, topk_idx = torch.topk(probs, k=min(topk, len(classes)))
    return [(classes[i], float(p)) for i, p in zip(topk_idx.tolist(), topk_probs.tolist())]


def resolve_image_code(images_dir, code, ext='.jpg'):
    """Map a user-typed image code to `<images_dir>/<code><ext>` if that file exists."""
    code = code.strip()
    if not code:
        return None
    path = os.path.join(images_dir, f'{code}{ext}')
    return path if os.path.isfile(path) else None


def display_ascii_art(img_path, ramp=DEFAULT_RAMP, step_x=DEFAULT_STEP_X, step_y=DEFAULT_STEP_Y):
    """Print the ASCII preview; failures are reported, never raised."""
    try:
        print(image_to_ascii(img_path, ramp=ramp, step_x=step_x, step_y=step_y))
    except AsciiArtError as e:
        print(f'Error displaying image: {e}')


def classify_single_image(model, classes, img_path, device='cpu', img_size=224, ascii_art=True, **ascii_kwargs):
    if not os.path.isfile(img_path):
        print(f'File not found: {img_path}')
        return None

    preds = predict_image(model, classes, img_path, device=device, topk=1, img_size=img_size)
    label, score = preds[0]

    print('Individual Image Prediction:')
    print(format_table(['Image', 'Predicted Classified Label', 'Score'],
                       [[os.path.basename(img_path), label, format_score(score)]]))

    if ascii_art:
        display_ascii_art(img_path, **ascii_kwargs)
    return label, score


def interactive_loop(model, classes, images_dir, device='cpu', img_size=224, ascii_art=True,
                     ext='.jpg', input_fn=input, **ascii_kwargs):
    """Read image codes until 'exit' (or EOF) and classify each one.

    Per-command failures are printed and the loop continues.
    """
    print(f"Interactive Image Classification. Enter '{EXIT_COMMAND}' to quit.")
    while True:
        try:
            code = input_fn(PROMPT)
        except EOFError:
            print()
            break

        if code.strip().lower() == EXIT_COMMAND:
            break

        img_path = resolve_image_code(images_dir, code, ext=ext)
        if img_path is None:
            print(f'Image not found for code: {code.strip()}')
            continue

        try:
            classify_single_image(model, classes, img_path, device=device, img_size=img_size,
                                  ascii_art=ascii_art, **ascii_kwargs)
        except (OSError, ValueError, RuntimeError, Image.DecompressionBombError, AsciiArtError) as e:
            print(f'Error classifying {img_path}: {e}')


def collect_image_paths(input_path):
    if os.path.isdir(input_path):
        return [os.path.join(input_path, f) for f in sorted(os.listdir(input_path))
                if f.lower().endswith(IMAGE_EXTS)]
    return [input_path]


def predict_batch(model, classes, paths, output_dir, device='cpu', topk=3, img_size=224, compile_inferred=False):
    """Write `<image>.txt` (label<TAB>prob per line) for each path, optionally a compiled CSV."""
    os.makedirs(output_dir, exist_ok=True)
    compiled_rows = []

    for p in paths:
        preds = predict_image(model, classes, p, device=device, topk=topk, img_size=img_size)
        base = os.path.splitext(os.path.basename(p))[0]
        out_path = os.path.join(output_dir, f"{base}.txt")
        with open(out_path, 'w', encoding='utf8') as f:
            for label, prob in preds:
                f.write(f"{label}\t{prob:.6f}\n")
        print(f'Wrote predictions for {p} -> {out_path}')

        if compile_inferred:
            # flattened row: image_path, label1, prob1, label2, prob2, ...
            row = [p]
            for label, prob in preds:
                row.append(label)
                row.append(f"{prob:.6f}")
            compiled_rows.append(row)

    csv_out = None
    if compile_inferred and compiled_rows:
        csv_out = os.path.join(output_dir, 'compiled_predictions.csv')
        k = min(topk, len(classes))
        with open(csv_out, 'w', newline='', encoding='utf8') as cf:
            w = csv.writer(cf)
            header = ['image_path']
            for i in range(1, k + 1):
                header += [f'label_{i}', f'prob_{i}']
            w.writerow(header)
            w.writerows(compiled_rows)
        print(f'Wrote compiled predictions: {csv_out}')
    return csv_out


def main(argv=None):
    parser = argparse.ArgumentParser(description='Classify images with a trained checkpoint')
    parser.add_argument('--ckpt', default=DEFAULT_CHECKPOINT, help='Path to checkpoint (best.pth)')
    parser.add_argument('--images', default=DEFAULT_IMAGES_DIR, help='Folder searched for <code>.jpg in interactive mode')
    parser.add_argument('--ext', default='.jpg', help='Extension appended to image codes in interactive mode')
    parser.add_argument('--input', default=None, help='Image file or folder to classify in batch mode (skips the prompt)')
    parser.add_argument('--output', default='classifications', help='Output folder for batch predictions')
    parser.add_argument('--topk', type=int, default=3)
    parser.add_argument('--compile-inferred', action='store_true', help='Write a compiled CSV of all batch predictions')
    parser.add_argument('--device', default=None)
    parser.add_argument('--no-ascii', action='store_true', help='Do not print the ASCII preview')
    parser.add_argument('--ramp', default=DEFAULT_RAMP, help='ASCII glyphs ordered dark to bright')
    parser.add_argument('--step-x', type=int, default=DEFAULT_STEP_X, help='Pixel columns between ASCII samples')
    parser.add_argument('--step-y', type=int, default=DEFAULT_STEP_Y, help='Pixel rows between ASCII samples')
    args = parser.parse_args(argv)

    if len(args.ramp) < 2:
        parser.error('--ramp needs at least 2 characters')
    if args.step_x < 1 or args.step_y < 1:
        parser.error('--step-x and --step-y must be >= 1')

    device = select_device(args.device)
    model, classes, img_size = load_checkpoint(args.ckpt, device=device)

    if args.input is not None:
        paths = collect_image_paths(args.input)
        predict_batch(model, classes, paths, args.output, device=device, topk=args.topk,
                      img_size=img_size, compile_inferred=args.compile_inferred)
        return

    interactive_loop(model, classes, args.images, device=device, img_size=img_size, ascii_art=not args.no_ascii,
                     ext=args.ext, ramp=args.ramp, step_x=args.step_x, step_y=args.step_y)


if __name__ == '__main__':
    main()
