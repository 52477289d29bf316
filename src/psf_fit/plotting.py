import matplotlib.pyplot as plt
import numpy as np

from .core import gaussian_model


def plot_fit(patch, result, title="Gaussian fit", show=False):
    patch = np.asarray(patch, float)
    nx = patch.shape[0]
    model = gaussian_model(nx, result.params)
    model[np.isnan(patch)] = np.nan
    cx = nx // 2 + result.params[0]
    cy = nx // 2 + result.params[1]

    fig, axes = plt.subplots(1, 3, figsize=(11, 4))
    panels = [(patch, "data"), (model, "model"), (result.residuals, "residuals")]
    for ax, (img, name) in zip(axes, panels):
        im = ax.imshow(img, origin="upper", interpolation="nearest")
        ax.plot(cx, cy, "r+", markersize=12)
        ax.set_title(name)
        ax.set_xlabel("x (pixels)")
        ax.set_ylabel("y (pixels)")
        fig.colorbar(im, ax=ax, fraction=0.046)
    sx, sy = result.params[3], result.params[4]
    fig.suptitle(f"{title} (σx≈{sx:.2f}, σy≈{sy:.2f}, θ≈{np.degrees(result.params[5]):.1f}°)")
    fig.tight_layout()
    if show:
        plt.show()
    return fig
