import numpy as np
from numpy.typing import NDArray

from .position import WatermarkBox


def apply_opacity(layer: NDArray[np.uint8], opacity: float) -> NDArray[np.uint8]:
    """Scale the alpha channel of an RGBA layer by ``opacity`` (0.0 to 1.0)."""
    result = layer.copy()
    if opacity >= 1.0:
        return result
    alpha = result[:, :, 3].astype(np.float32) * opacity
    result[:, :, 3] = np.clip(np.rint(alpha), 0, 255).astype(np.uint8)
    return result


def blend_region(
    region: NDArray[np.uint8],
    layer: NDArray[np.uint8],
) -> NDArray[np.uint8]:
    """
    Alpha-blend an RGBA watermark layer over a host region of the same size.

    Formula for opaque hosts: blended = host * (1 - alpha) + mark * alpha.
    Hosts with an alpha channel use the "over" operator for colour and alpha.
    Pixels where the layer is fully transparent are returned unchanged.

    Args:
        region: Host pixels (h, w, 3) RGB or (h, w, 4) RGBA
        layer: Watermark pixels (h, w, 4) RGBA

    Returns:
        New uint8 array with the same shape as ``region``
    """
    host = region.astype(np.float32)
    mark = layer[:, :, :3].astype(np.float32)
    alpha = layer[:, :, 3:4].astype(np.float32) / 255.0
    mask = layer[:, :, 3:4] > 0

    if region.shape[2] == 3:
        blended = host * (1.0 - alpha) + mark * alpha
    else:
        host_alpha = host[:, :, 3:4] / 255.0
        out_alpha = alpha + host_alpha * (1.0 - alpha)
        numerator = mark * alpha + host[:, :, :3] * host_alpha * (1.0 - alpha)
        # Fully transparent output pixels carry no colour
        safe_alpha = np.where(out_alpha > 0, out_alpha, 1.0)
        colour = np.where(out_alpha > 0, numerator / safe_alpha, 0.0)
        blended = np.concatenate([colour, out_alpha * 255.0], axis=2)

    blended = np.clip(np.rint(blended), 0, 255)
    result = np.where(mask, blended, host)
    return result.astype(np.uint8)


def apply_watermark(
    image_array: NDArray[np.uint8],
    layer: NDArray[np.uint8],
    box: WatermarkBox,
) -> NDArray[np.uint8]:
    """
    Burn a watermark layer into an image at the given box.

    The input array is never modified; a new array is returned in which only
    the pixels inside ``box`` may differ from the input.

    Args:
        image_array: Host image as numpy array (H, W, C) in RGB/RGBA format
        layer: RGBA watermark layer of shape (box.height, box.width, 4)
        box: Watermark bounding box

    Returns:
        New image array with the watermark applied
    """
    img_h, img_w = image_array.shape[:2]
    if box.x < 0 or box.y < 0 or box.right > img_w or box.bottom > img_h:
        raise ValueError(f"Watermark box {box} does not fit a {img_w}x{img_h} image")
    if layer.shape[:2] != (box.height, box.width):
        raise ValueError(
            f"Layer of {layer.shape[1]}x{layer.shape[0]} does not match box {box.width}x{box.height}"
        )

    result = image_array.copy()
    region = result[box.y : box.bottom, box.x : box.right]
    result[box.y : box.bottom, box.x : box.right] = blend_region(region, layer)
    return result
